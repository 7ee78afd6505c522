"""Utility helpers shared by the core services."""
