"""Playwright adapter for the Flow page."""
