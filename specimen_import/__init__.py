"""Spreadsheet import and reconciliation for lab specimen tracking."""

__version__ = "0.1.0"
