"""Claim, heartbeat and merge coordination."""
