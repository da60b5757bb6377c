"""Git worktree sandboxes and their registry."""
