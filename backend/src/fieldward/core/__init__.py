"""Core types, errors and logging helpers shared across Fieldward."""
