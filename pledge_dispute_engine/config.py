"""Configuration for the pledge dispute engine.

All settings are driven by environment variables with sensible defaults.
The escalation rules are handed to the engine explicitly; nothing in the
engine reads ``settings`` directly.
"""

from __future__ import annotations

import os

from pydantic import BaseModel, Field


def _get_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return int(val)


def _get_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return float(val)


def _get_bool(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return val.strip().lower() in {"1", "true", "yes", "y", "on"}


class EscalationRules(BaseModel):
    """Timing and threshold rules that drive voting and escalation."""

    voting_duration_hours: float = Field(default=72, gt=0)
    # Percent of total assigned voting power that must participate.
    quorum_percent: int = Field(default=25, ge=0, le=100)
    # Percent of *cast* power the leading option needs to auto-resolve.
    community_vote_threshold: int = Field(default=70, ge=0, le=100)
    escalation_timeout_hours: float = Field(default=168, gt=0)
    appeal_window_hours: float = Field(default=48, ge=0)


class EngineSettings:
    # --- Escalation rules ---
    voting_duration_hours: float = _get_float("DISPUTE_VOTING_DURATION_HOURS", 72)
    quorum_percent: int = _get_int("DISPUTE_QUORUM_PERCENT", 25)
    community_vote_threshold: int = _get_int("DISPUTE_COMMUNITY_VOTE_THRESHOLD", 70)
    escalation_timeout_hours: float = _get_float("DISPUTE_ESCALATION_TIMEOUT_HOURS", 168)
    appeal_window_hours: float = _get_float("DISPUTE_APPEAL_WINDOW_HOURS", 48)

    # --- Timeout sweeper ---
    sweep_interval_seconds: float = _get_float("DISPUTE_SWEEP_INTERVAL_SECONDS", 300.0)
    sweeper_enabled: bool = _get_bool("DISPUTE_SWEEPER_ENABLED", True)

    # --- Event notifications ---
    # Webhook URL that receives every dispute event. Empty means log only.
    notify_webhook_url: str = os.getenv("DISPUTE_NOTIFY_WEBHOOK_URL", "")
    # If set, outgoing events carry an HMAC-SHA256 signature header.
    notify_webhook_secret: str = os.getenv("DISPUTE_NOTIFY_WEBHOOK_SECRET", "")
    notify_timeout_seconds: float = _get_float("DISPUTE_NOTIFY_TIMEOUT", 5.0)

    # --- HTTP API ---
    api_host: str = os.getenv("DISPUTE_HOST", "127.0.0.1")
    api_port: int = _get_int("DISPUTE_PORT", 3200)

    def escalation_rules(self) -> EscalationRules:
        return EscalationRules(
            voting_duration_hours=self.voting_duration_hours,
            quorum_percent=self.quorum_percent,
            community_vote_threshold=self.community_vote_threshold,
            escalation_timeout_hours=self.escalation_timeout_hours,
            appeal_window_hours=self.appeal_window_hours,
        )


settings = EngineSettings()
