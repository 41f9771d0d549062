"""
Hearth — dialog orchestration for the smart home.

Wires the pipeline together from config:

    TieredContextStore (memory/Redis cache + SQLite) → ContextManager
    NLUClient + LocalIntentMatcher → IntentResolver
    PluginRegistry (built-in handlers) → PluginDispatcher
    EventPublisher (bus + optional webhook)
    DialogOrchestrator, ProactiveRuleEngine (subscribed to device.events)

Run: uvicorn hearth.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI
from fastapi.responses import JSONResponse

import hearth
from hearth.context.cache import MemoryContextCache, RedisContextCache
from hearth.context.durable import SqliteContextStore
from hearth.context.enrichment import (
    ENVIRONMENT,
    PATTERNS,
    PROFILE,
    ContextEnricher,
    HttpEnrichmentSource,
)
from hearth.context.locks import KeyedLockTable
from hearth.context.manager import ContextManager
from hearth.context.store import TieredContextStore
from hearth.core.config import HearthConfig, config
from hearth.core.logging import setup_logging
from hearth.core.metrics import metrics
from hearth.events.bus import EventBus
from hearth.events.publisher import BusSink, EventPublisher, WebhookSink
from hearth.handlers import default_handlers
from hearth.http.routes import create_dialog_router
from hearth.intent.nlu import NLUClient
from hearth.intent.resolver import IntentResolver
from hearth.orchestrator import DialogOrchestrator
from hearth.plugins.dispatcher import PluginDispatcher
from hearth.plugins.registry import PluginRegistry
from hearth.proactive.cooldown import CooldownTracker
from hearth.proactive.engine import ProactiveRuleEngine

logger = logging.getLogger("hearth")


@dataclass
class Hearth:
    """Every long-lived component of one running engine."""

    config: HearthConfig
    bus: EventBus
    cache: MemoryContextCache | RedisContextCache
    durable: SqliteContextStore
    contexts: ContextManager
    registry: PluginRegistry
    publisher: EventPublisher
    orchestrator: DialogOrchestrator
    engine: ProactiveRuleEngine

    async def start(self) -> None:
        await self.durable.start()
        await self.publisher.start()
        await self.engine.start()
        logger.info(
            "Hearth %s ready (cache=%s, handlers=%s, rules=%s)",
            hearth.__version__,
            type(self.cache).__name__,
            self.registry.names(),
            [r.name for r in self.engine.rules],
        )

    async def stop(self) -> None:
        await self.engine.stop()
        await self.contexts.flush()
        await self.publisher.stop()
        await self.durable.stop()
        if isinstance(self.cache, RedisContextCache):
            await self.cache.close()


def build(cfg: HearthConfig | None = None) -> Hearth:
    cfg = cfg or config
    bus = EventBus()

    if cfg.context.redis_url:
        cache = RedisContextCache.from_url(cfg.context.redis_url)
    else:
        cache = MemoryContextCache()
    durable = SqliteContextStore(cfg.context.db_path)
    store = TieredContextStore(cache, durable, cfg.context.ttl_seconds)

    sources = [
        HttpEnrichmentSource(name, url, cfg.enrichment.timeout)
        for name, url in (
            (PROFILE, cfg.enrichment.profile_url),
            (ENVIRONMENT, cfg.enrichment.environment_url),
            (PATTERNS, cfg.enrichment.pattern_url),
        )
        if url
    ]
    contexts = ContextManager(
        store,
        ContextEnricher(sources, timeout=cfg.enrichment.timeout),
        history_limit=cfg.context.history_limit,
        locks=KeyedLockTable(idle_seconds=cfg.context.lock_idle_seconds),
    )

    nlu = None
    if cfg.nlu.base_url:
        nlu = NLUClient(cfg.nlu.base_url, api_key=cfg.nlu.api_key, timeout=cfg.nlu.timeout)
    resolver = IntentResolver(
        nlu, default_language=cfg.nlu.language, timeout=cfg.nlu.timeout + 0.5
    )

    registry = PluginRegistry(
        default_handlers(utc_offset_hours=cfg.proactive.utc_offset_hours)
    )
    dispatcher = PluginDispatcher(
        registry,
        handler_timeout=cfg.dispatch.handler_timeout,
        turn_timeout=cfg.dispatch.turn_timeout,
        max_concurrency=cfg.dispatch.max_concurrency,
    )

    publisher = EventPublisher([BusSink(bus)], queue_size=cfg.events.queue_size)
    if cfg.events.webhook_url:
        publisher.add_sink(WebhookSink(cfg.events.webhook_url, cfg.events.webhook_timeout))

    orchestrator = DialogOrchestrator(
        contexts,
        resolver,
        dispatcher,
        publisher,
        turn_timeout=cfg.dispatch.turn_timeout,
    )
    engine = ProactiveRuleEngine(
        contexts,
        orchestrator,
        cooldowns=CooldownTracker(cfg.proactive.utc_offset_hours),
        bus=bus,
        rule_timeout=cfg.proactive.rule_timeout,
        queue_size=cfg.proactive.queue_size,
        workers=cfg.proactive.workers,
    )
    engine.load_from_registry(registry)

    return Hearth(
        config=cfg,
        bus=bus,
        cache=cache,
        durable=durable,
        contexts=contexts,
        registry=registry,
        publisher=publisher,
        orchestrator=orchestrator,
        engine=engine,
    )


def create_app(runtime: Hearth | None = None) -> FastAPI:
    runtime = runtime or build()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        await runtime.start()
        try:
            yield
        finally:
            await runtime.stop()

    app = FastAPI(title="Hearth", version=hearth.__version__, lifespan=lifespan)
    app.state.hearth = runtime
    app.include_router(
        create_dialog_router(runtime.orchestrator, runtime.contexts, runtime.engine)
    )

    @app.get("/health")
    async def health():
        return JSONResponse(
            {
                "status": "ok",
                "version": hearth.__version__,
                "handlers": runtime.registry.names(),
                "rules": [r.name for r in runtime.engine.rules],
                "events_queue_depth": runtime.publisher.queue_depth,
                "pending_durable_writes": runtime.contexts.pending_writes,
            }
        )

    @app.get("/metrics")
    async def get_metrics():
        return JSONResponse(metrics.snapshot())

    return app


setup_logging()
app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run(app, host=config.server.host, port=config.server.port)


if __name__ == "__main__":
    main()
