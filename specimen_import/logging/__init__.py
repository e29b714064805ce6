"""Logging setup and the JSON Lines import message log."""
