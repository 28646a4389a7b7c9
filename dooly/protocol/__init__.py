"""Sync wire protocol: events, inbound payloads, registry, emitter."""
