"""Ingest status service interface and adapters."""
