"""Helpers for configuration, sessions and console output."""
