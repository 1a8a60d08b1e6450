"""Shared helpers for Chronicle."""
