"""Inventory counting back-of-house service."""
