"""Jojo: an authenticated chat backend with model fallback."""

__version__ = "1.0.0"
