"""Caller roles."""
