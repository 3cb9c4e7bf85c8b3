"""Remote archive catalog access."""
