"""Realtime plumbing: clock, broadcaster, privilege registry and the sync hub."""
