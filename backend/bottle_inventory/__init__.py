"""Bottle inventory backend: label field extraction and spreadsheet reconciliation."""

__version__ = "1.0.0"
