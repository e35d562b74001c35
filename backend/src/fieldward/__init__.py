"""Fieldward - metadata-driven access control for field-service data."""

__version__ = "0.1.0"
