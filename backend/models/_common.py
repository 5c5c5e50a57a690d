"""Helpers shared by the canonical and scraped models."""
import uuid


def new_uuid() -> str:
    return str(uuid.uuid4())


def iso(value):
    return value.isoformat() if value is not None else None
