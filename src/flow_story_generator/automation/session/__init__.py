"""Operator session persistence."""
