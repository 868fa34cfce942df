"""Unit tests for the catalog loader and validator."""

from __future__ import annotations

import pytest

from templateforge.core.catalog import CatalogValidationError, load_catalog, parse_catalog
from templateforge.models.catalog import ChecksumSpec


def _reasons(exc_info) -> list[str]:
    return [str(v) for v in exc_info.value.violations]


# ---------------------------------------------------------------------------
# Test: accepted documents
# ---------------------------------------------------------------------------


class TestValidCatalog:
    """Valid catalogs load in declared order with normalized fields."""

    def test_order_preserved(self, debian_entry, ubuntu_entry):
        catalog = parse_catalog([ubuntu_entry, debian_entry])
        assert catalog.labels == ["Ubuntu 24.04", "Debian 12"]

    def test_field_mapping(self, debian_entry):
        d = parse_catalog([debian_entry]).get("Debian 12")

        assert d.numeric_resource_id == 9000
        assert d.target_name == "debian12-cloudinit"
        assert d.source_file == "debian-12-genericcloud-amd64.qcow2"
        assert d.package_set == ("qemu-guest-agent", "cloud-init")
        assert d.checksum_spec is None

    def test_id_defaults_to_vm_name(self, debian_entry):
        assert parse_catalog([debian_entry]).get("Debian 12").id == "debian12-cloudinit"

    def test_comma_separated_packages(self, debian_entry):
        entry = {**debian_entry, "packages": "qemu-guest-agent, curl ,,vim"}
        d = parse_catalog([entry]).get("Debian 12")
        assert d.package_set == ("qemu-guest-agent", "curl", "vim")

    def test_numeric_string_vm_id(self, debian_entry):
        d = parse_catalog([{**debian_entry, "vm_id": "9000"}]).get("Debian 12")
        assert d.numeric_resource_id == 9000

    def test_checksum_parsed(self, debian_entry):
        entry = {**debian_entry, "checksum": "SHA512:" + "AB" * 64}
        spec = parse_catalog([entry]).get("Debian 12").checksum_spec
        assert spec == ChecksumSpec(algorithm="sha512", expected_digest="ab" * 64)

    def test_bare_checksum_is_sha256(self, debian_entry):
        entry = {**debian_entry, "checksum": "f" * 64}
        spec = parse_catalog([entry]).get("Debian 12").checksum_spec
        assert spec.text == "sha256:" + "f" * 64

    def test_load_from_file(self, write_catalog, debian_entry):
        catalog = load_catalog(write_catalog([debian_entry]))
        assert len(catalog) == 1
        assert "Debian 12" in catalog


# ---------------------------------------------------------------------------
# Test: rejected documents
# ---------------------------------------------------------------------------


class TestInvalidCatalog:
    """Any violation rejects the whole catalog, listing every problem."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(CatalogValidationError) as exc_info:
            load_catalog(tmp_path / "nope.json")
        assert "not found" in _reasons(exc_info)[0]

    def test_unparsable_json(self, tmp_path):
        path = tmp_path / "images.json"
        path.write_text("[{")
        with pytest.raises(CatalogValidationError):
            load_catalog(path)

    def test_not_a_list(self):
        with pytest.raises(CatalogValidationError) as exc_info:
            parse_catalog({"label": "x"})
        assert "must be a list" in _reasons(exc_info)[0]

    def test_empty_list(self):
        with pytest.raises(CatalogValidationError) as exc_info:
            parse_catalog([])
        assert "No images defined" in _reasons(exc_info)[0]

    def test_entry_not_object(self, debian_entry):
        with pytest.raises(CatalogValidationError) as exc_info:
            parse_catalog([debian_entry, "ubuntu"])
        assert _reasons(exc_info) == ["Entry #2: must be an object"]

    @pytest.mark.parametrize("key", ["label", "vm_id", "vm_name", "image_file", "image_url"])
    def test_missing_required_key(self, debian_entry, key):
        entry = {k: v for k, v in debian_entry.items() if k != key}
        with pytest.raises(CatalogValidationError) as exc_info:
            parse_catalog([entry])
        assert f"missing required key {key!r}" in _reasons(exc_info)[0]

    @pytest.mark.parametrize("vm_id", ["90a0", "-1", 12.5, True])
    def test_non_numeric_vm_id(self, debian_entry, vm_id):
        with pytest.raises(CatalogValidationError) as exc_info:
            parse_catalog([{**debian_entry, "vm_id": vm_id}])
        assert "vm_id must be numeric" in _reasons(exc_info)[0]

    def test_zero_vm_id(self, debian_entry):
        with pytest.raises(CatalogValidationError):
            parse_catalog([{**debian_entry, "vm_id": 0}])

    def test_duplicate_vm_id(self, debian_entry, ubuntu_entry):
        with pytest.raises(CatalogValidationError) as exc_info:
            parse_catalog([debian_entry, {**ubuntu_entry, "vm_id": 9000}])
        reasons = _reasons(exc_info)
        assert reasons == ["Entry #2: duplicate vm_id 9000 (first used by entry #1)"]

    def test_duplicate_label(self, debian_entry, ubuntu_entry):
        with pytest.raises(CatalogValidationError) as exc_info:
            parse_catalog([debian_entry, {**ubuntu_entry, "label": "Debian 12"}])
        assert "duplicate label 'Debian 12'" in _reasons(exc_info)[0]

    def test_shared_vm_name_without_id(self, debian_entry, ubuntu_entry):
        clash = {**ubuntu_entry, "vm_name": "debian12-cloudinit"}
        with pytest.raises(CatalogValidationError) as exc_info:
            parse_catalog([debian_entry, clash])
        assert _reasons(exc_info) == [
            "Entry #2: duplicate vm_name (used as id) 'debian12-cloudinit' "
            "(first used by entry #1)"
        ]

    def test_duplicate_explicit_id(self, debian_entry, ubuntu_entry):
        with pytest.raises(CatalogValidationError) as exc_info:
            parse_catalog([{**debian_entry, "id": "base"}, {**ubuntu_entry, "id": "base"}])
        assert "duplicate id 'base'" in _reasons(exc_info)[0]

    @pytest.mark.parametrize("packages", [5, {"name": "vim"}, [1, None], ["vim", 2], True])
    def test_malformed_packages(self, debian_entry, packages):
        with pytest.raises(CatalogValidationError) as exc_info:
            parse_catalog([{**debian_entry, "packages": packages}])
        assert _reasons(exc_info) == [
            "Entry #1: packages must be a list of strings or a comma-separated string"
        ]

    def test_invalid_checksum(self, debian_entry):
        with pytest.raises(CatalogValidationError) as exc_info:
            parse_catalog([{**debian_entry, "checksum": "md7:zz"}])
        assert "invalid checksum" in _reasons(exc_info)[0]

    def test_all_violations_reported(self, debian_entry, ubuntu_entry):
        bad_first = {k: v for k, v in debian_entry.items() if k != "image_url"}
        bad_second = {**ubuntu_entry, "vm_id": "abc"}
        with pytest.raises(CatalogValidationError) as exc_info:
            parse_catalog([bad_first, bad_second])

        reasons = _reasons(exc_info)
        assert len(reasons) == 2
        assert reasons[0].startswith("Entry #1:")
        assert reasons[1].startswith("Entry #2:")
