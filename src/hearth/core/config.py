"""
Hearth Configuration — single source of truth for all settings.

Reads from environment variables with sensible defaults.
No config files, no YAML. Just env vars (and an optional .env).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class ContextConfig:
    """Context store settings (fast tier + durable tier)."""

    redis_url: str = ""  # Empty → in-process cache tier
    db_path: str = "hearth_context.db"
    ttl_seconds: int = 24 * 60 * 60  # Sliding inactivity TTL for the fast tier
    history_limit: int = 100
    lock_idle_seconds: float = 300.0  # Per-session locks are reaped after this

    @classmethod
    def from_env(cls) -> ContextConfig:
        return cls(
            redis_url=os.getenv("HEARTH_REDIS_URL", ""),
            db_path=os.getenv("HEARTH_DB_PATH", "hearth_context.db"),
            ttl_seconds=int(os.getenv("HEARTH_CONTEXT_TTL", str(24 * 60 * 60))),
            history_limit=int(os.getenv("HEARTH_HISTORY_LIMIT", "100")),
            lock_idle_seconds=float(os.getenv("HEARTH_LOCK_IDLE_SECONDS", "300")),
        )


@dataclass(frozen=True)
class NLUConfig:
    """External NLU service settings."""

    base_url: str = ""  # Empty → local matcher only
    api_key: str = ""
    timeout: float = 2.0
    language: str = "ko"

    @classmethod
    def from_env(cls) -> NLUConfig:
        return cls(
            base_url=os.getenv("HEARTH_NLU_URL", ""),
            api_key=os.getenv("HEARTH_NLU_API_KEY", ""),
            timeout=float(os.getenv("HEARTH_NLU_TIMEOUT", "2.0")),
            language=os.getenv("HEARTH_LANGUAGE", "ko"),
        )


@dataclass(frozen=True)
class EnrichmentConfig:
    """User profile / environment / pattern-analysis collaborators."""

    profile_url: str = ""
    environment_url: str = ""
    pattern_url: str = ""
    timeout: float = 1.5

    @classmethod
    def from_env(cls) -> EnrichmentConfig:
        return cls(
            profile_url=os.getenv("HEARTH_PROFILE_URL", ""),
            environment_url=os.getenv("HEARTH_ENVIRONMENT_URL", ""),
            pattern_url=os.getenv("HEARTH_PATTERN_URL", ""),
            timeout=float(os.getenv("HEARTH_ENRICHMENT_TIMEOUT", "1.5")),
        )


@dataclass(frozen=True)
class DispatchConfig:
    """Plugin dispatcher settings."""

    handler_timeout: float = 3.0  # Per-handler deadline
    turn_timeout: float = 8.0  # Outer deadline for the whole turn
    max_concurrency: int = 8  # Bounded fan-out per turn

    @classmethod
    def from_env(cls) -> DispatchConfig:
        return cls(
            handler_timeout=float(os.getenv("HEARTH_HANDLER_TIMEOUT", "3.0")),
            turn_timeout=float(os.getenv("HEARTH_TURN_TIMEOUT", "8.0")),
            max_concurrency=int(os.getenv("HEARTH_MAX_CONCURRENCY", "8")),
        )


@dataclass(frozen=True)
class ProactiveConfig:
    """Proactive rule engine settings."""

    queue_size: int = 500
    workers: int = 2
    rule_timeout: float = 5.0
    utc_offset_hours: float = 9.0  # Local calendar day for daily cooldowns

    @classmethod
    def from_env(cls) -> ProactiveConfig:
        return cls(
            queue_size=int(os.getenv("HEARTH_PROACTIVE_QUEUE_SIZE", "500")),
            workers=int(os.getenv("HEARTH_PROACTIVE_WORKERS", "2")),
            rule_timeout=float(os.getenv("HEARTH_RULE_TIMEOUT", "5.0")),
            utc_offset_hours=float(os.getenv("HEARTH_UTC_OFFSET_HOURS", "9")),
        )


@dataclass(frozen=True)
class EventsConfig:
    """Outbound analytics event settings."""

    queue_size: int = 1000
    webhook_url: str = ""
    webhook_timeout: float = 2.0

    @classmethod
    def from_env(cls) -> EventsConfig:
        return cls(
            queue_size=int(os.getenv("HEARTH_EVENTS_QUEUE_SIZE", "1000")),
            webhook_url=os.getenv("HEARTH_EVENTS_WEBHOOK_URL", ""),
            webhook_timeout=float(os.getenv("HEARTH_EVENTS_WEBHOOK_TIMEOUT", "2.0")),
        )


@dataclass(frozen=True)
class ServerConfig:
    """Server settings."""

    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls) -> ServerConfig:
        return cls(
            host=os.getenv("HEARTH_HOST", "0.0.0.0"),
            port=int(os.getenv("HEARTH_PORT", "8000")),
        )


@dataclass(frozen=True)
class HearthConfig:
    """Root configuration."""

    context: ContextConfig = field(default_factory=ContextConfig)
    nlu: NLUConfig = field(default_factory=NLUConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    proactive: ProactiveConfig = field(default_factory=ProactiveConfig)
    events: EventsConfig = field(default_factory=EventsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> HearthConfig:
        return cls(
            context=ContextConfig.from_env(),
            nlu=NLUConfig.from_env(),
            enrichment=EnrichmentConfig.from_env(),
            dispatch=DispatchConfig.from_env(),
            proactive=ProactiveConfig.from_env(),
            events=EventsConfig.from_env(),
            server=ServerConfig.from_env(),
        )


# Singleton — import this wherever you need config
config = HearthConfig.from_env()


def reload_config() -> HearthConfig:
    """Re-read the environment and replace the module-level config."""
    global config
    config = HearthConfig.from_env()
    return config
