"""Configuration, clock, logging and persistence helpers."""
