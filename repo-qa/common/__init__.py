"""Shared error taxonomy and retry helper."""
