"""Change detection, conditional fetching and reconciliation."""
