"""Offline text analysis helpers."""
