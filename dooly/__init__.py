"""Dooly: realtime playback and collaborative sequencer sync service."""
