"""
Dooly Configuration

Environment-based configuration for the realtime sync service.
"""
import logging
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _app_version_from_package() -> str:
    """Read version from pyproject.toml: the single source of truth."""
    try:
        from importlib.metadata import version
        return version("dooly-sync")
    except Exception:
        pass
    # Fallback: parse pyproject.toml directly (dev / non-installed mode)
    try:
        from pathlib import Path
        import re
        pyproject = Path(__file__).resolve().parent.parent / "pyproject.toml"
        match = re.search(r'^version\s*=\s*"([^"]+)"', pyproject.read_text(), re.MULTILINE)
        if match:
            return match.group(1)
    except Exception:
        pass
    return "0.0.0-unknown"


# ── Song document limits ──────────────────────────────────────────────────────
# Shared by the server authority and the client reconciler; both sides must
# clamp identically or mirrors diverge.

DEFAULT_TEMPO: int = 120
TEMPO_MIN: int = 40
TEMPO_MAX: int = 240

DEFAULT_BARS: int = 4
BARS_MIN: int = 1
BARS_MAX: int = 256
STEPS_PER_BAR: int = 16

PITCH_MIN: int = 21   # A0
PITCH_MAX: int = 108  # C8
VELOCITY_MIN: float = 0.05
VELOCITY_MAX: float = 1.0
DEFAULT_VELOCITY: float = 0.8
DEFAULT_SYNTH: str = "Triangle"

ARRANGEMENT_TRACKS: int = 4
GAIN_MIN: float = 0.0
GAIN_MAX: float = 1.0
PAN_MIN: float = -1.0
PAN_MAX: float = 1.0
OFFSET_MS_MAX: int = 600_000

NAME_MAX_LENGTH: int = 64
TYPING_TEXT_MAX_LENGTH: int = 140

# Drum lanes are fixed for the lifetime of a document.
DRUM_LANES: tuple[str, ...] = ("kick", "snare", "hat", "clap")

DEFAULT_PATTERN_ID: str = "p1"

# ── Playback limits ───────────────────────────────────────────────────────────

PLAYBACK_RATE_MIN: float = 0.25
PLAYBACK_RATE_MAX: float = 2.0
PLAYBACK_TOPIC: str = "tv"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service Info (app_version: single source is pyproject.toml when installed; else fallback)
    app_name: str = "Dooly Sync"
    app_version: str = _app_version_from_package()
    debug: bool = False

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 3001

    # Playback timeline
    timeline_tick_seconds: float = 1.0       # authority broadcast cadence
    follower_cadence_seconds: float = 0.25   # client drift-correction loop
    drift_threshold_ms: int = 150            # hard-seek above this divergence
    state_request_interval_seconds: float = 15.0
    stall_timeout_seconds: float = 5.0

    # Collaborative documents
    pending_edit_ttl_seconds: float = 5.0
    default_document_id: str = "default"

    # Realtime fan-out
    outbound_queue_size: int = 256   # per connection; full queue drops the message
    hub_inbox_size: int = 1024

    # HTTP clock reference
    timesync_rate_limit: str = "120/minute"

    # CORS Settings (fail closed: no default origins)
    # Set DOOLY_CORS_ORIGINS (JSON array) in .env. Local dev: ["http://localhost:5173"].
    cors_origins: list[str] = []

    @model_validator(mode="after")
    def _warn_cors_wildcard_in_production(self) -> "Settings":
        """Warn when CORS allows all origins in non-debug (production) mode."""
        if not self.debug and self.cors_origins and "*" in self.cors_origins:
            logging.getLogger(__name__).warning(
                "CORS allows all origins (*) with DOOLY_DEBUG=false. "
                "Set DOOLY_CORS_ORIGINS to exact origins in production."
            )
        return self

    model_config = SettingsConfigDict(
        env_prefix="DOOLY_",
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience access
settings = get_settings()
