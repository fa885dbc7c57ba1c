"""Compliance object types."""
