"""Kiara Intelligence chat client core."""
