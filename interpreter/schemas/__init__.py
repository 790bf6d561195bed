"""Pydantic schemas for the realtime protocol."""
