"""Archive manager services."""
