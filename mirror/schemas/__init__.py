"""Pydantic schemas for on-disk documents and API responses."""
