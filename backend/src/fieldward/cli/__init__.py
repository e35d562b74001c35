"""Fieldward command line interface."""
