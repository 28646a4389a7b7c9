"""Shared video timeline: authority, follower and ref validation."""
