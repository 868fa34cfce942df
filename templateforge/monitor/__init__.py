"""Terminal rendering of build reports and catalog listings."""
