"""
Process startup and shutdown for a host application embedding the core.

``startup()`` configures logging and tracing from settings, connects the
Redis pool backing the semantic cache, wires the orchestration service and
installs it for ``get_orchestration_service()``. ``shutdown()`` releases
everything in reverse order.
"""
from typing import Optional

from aicore.core.cache import close_redis, initialize_redis
from aicore.core.config import Settings, get_settings
from aicore.core.logging import configure_logging, get_logger
from aicore.core.tracing import configure_tracing, shutdown_tracing
from aicore.services.credits import UsageLedger, WalletService
from aicore.services.orchestration import (
    AIOrchestrationService,
    create_orchestration_service,
    get_orchestration_service,
    set_orchestration_service,
)

logger = get_logger(__name__)


async def startup(
    wallet_service: WalletService,
    usage_ledger: UsageLedger,
    settings: Optional[Settings] = None,
    refresh_health: bool = True,
) -> AIOrchestrationService:
    settings = settings or get_settings()

    configure_logging(log_level=settings.log_level, json_output=settings.log_json)
    configure_tracing(
        service_name=settings.otel_service_name,
        otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        sampling_rate=settings.otel_traces_sampler_arg,
    )
    logger.info("aicore_startup_started", environment=settings.environment)

    redis_initialized = await initialize_redis(settings.redis_url)
    if not redis_initialized:
        logger.warning(
            "aicore_startup_redis_unavailable",
            message="Redis not available. Semantic cache disabled until it is (every lookup is a miss).",
        )

    service = create_orchestration_service(wallet_service, usage_ledger, settings=settings)
    if refresh_health:
        await service.refresh_provider_health(force=True)

    set_orchestration_service(service)
    logger.info(
        "aicore_startup_completed",
        providers=sorted(service.adapters),
        redis=redis_initialized,
    )
    return service


async def shutdown() -> None:
    logger.info("aicore_shutdown_started")
    try:
        service = get_orchestration_service()
    except RuntimeError:
        service = None
    if service is not None:
        await service.aclose()
        set_orchestration_service(None)
    shutdown_tracing()
    await close_redis()
    logger.info("aicore_shutdown_completed")
