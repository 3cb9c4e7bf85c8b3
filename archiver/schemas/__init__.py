"""Pydantic schemas for remote service payloads."""
