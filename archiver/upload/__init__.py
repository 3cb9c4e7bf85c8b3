"""Upload coordinator interface and adapters."""
