"""Capture surfaces (extension, mobile share sheet) turning a page into a record."""
