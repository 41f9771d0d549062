"""
Conversation context — tiered storage and the manager that owns it.

Key components:
- ConversationContext / ContextDelta: the state and the changes applied to it
- MemoryContextCache / RedisContextCache: fast TTL tier
- SqliteContextStore: durable document tier
- TieredContextStore: read-through / degrade-on-failure composition
- ContextManager: get-or-create, enrichment, per-session serialized updates
"""

from hearth.context.cache import MemoryContextCache, RedisContextCache
from hearth.context.durable import SqliteContextStore
from hearth.context.enrichment import ContextEnricher, HttpEnrichmentSource
from hearth.context.locks import KeyedLockTable
from hearth.context.manager import ContextManager
from hearth.context.models import (
    ContextDelta,
    ContextKey,
    ConversationContext,
    DeviceState,
    EnvironmentState,
    Turn,
    TurnRole,
    UserState,
)
from hearth.context.store import TieredContextStore

__all__ = [
    # Models
    "ContextDelta",
    "ContextKey",
    "ConversationContext",
    "DeviceState",
    "EnvironmentState",
    "Turn",
    "TurnRole",
    "UserState",
    # Storage
    "MemoryContextCache",
    "RedisContextCache",
    "SqliteContextStore",
    "TieredContextStore",
    # Manager
    "ContextEnricher",
    "ContextManager",
    "HttpEnrichmentSource",
    "KeyedLockTable",
]
