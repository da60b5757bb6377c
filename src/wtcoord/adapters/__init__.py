"""Adapters for external command-line collaborators."""
