"""Schema analysis modules."""
