"""Bulk download of produced artifacts."""
