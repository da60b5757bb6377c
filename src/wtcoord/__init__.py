"""Worktree coordination for multiple agents sharing one task store."""

__version__ = "0.1.0"
