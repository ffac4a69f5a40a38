"""Manifest spreadsheets: sheet discovery, header templates, link extraction and row parsing."""
