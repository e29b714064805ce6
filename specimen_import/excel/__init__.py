"""Workbook decoding: cell normalizer and file reader."""
