"""FastAPI application factory"""

from contextlib import asynccontextmanager
from datetime import date
from typing import Callable, Optional

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from settlement_gateway.api.middleware import RequestContextMiddleware
from settlement_gateway.api.v1 import settlements, transactions
from settlement_gateway.domain.models import RunSummary
from settlement_gateway.infrastructure.clients.payout import BankPayoutClient
from settlement_gateway.infrastructure.clients.webhook import WebhookNotifier
from settlement_gateway.infrastructure.database.session import Database
from settlement_gateway.infrastructure.observability.logging import setup_logging
from settlement_gateway.services.orchestrator import Notifier, PayoutGateway, SettlementOrchestrator
from settlement_gateway.services.scheduler import SettlementScheduler
from settlement_gateway.utils.date_utils import utc_today
from settlement_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app(
    database: Optional[Database] = None,
    payout_gateway: Optional[PayoutGateway] = None,
    notifier: Optional[Notifier] = None,
    clock: Callable[[], date] = utc_today,
) -> FastAPI:
    """Create and configure FastAPI application"""
    database = database or Database(settings.database_url)
    notifier = notifier or WebhookNotifier()
    scheduler = SettlementScheduler()
    orchestrator = SettlementOrchestrator(
        database,
        payout_gateway or BankPayoutClient(),
        scheduler,
        notifier=notifier,
        clock=clock,
    )

    async def notify_run_completed(summary: RunSummary) -> None:
        await notifier.send_event(
            {
                "event": "SETTLEMENT_RUN_COMPLETED",
                "settlement_id": str(summary.settlement_id),
                "run_type": summary.run_type.value,
                "status": summary.status.value,
                "settled_businesses": [str(o.business_id) for o in summary.succeeded],
                "failed_businesses": [str(o.business_id) for o in summary.failed],
                "amount_settled_minor": summary.amount_settled,
                "amount_shared_minor": summary.amount_shared,
                "history_id": str(summary.history_id) if summary.history_id else None,
                "error": summary.error,
            }
        )

    scheduler.add_listener(notify_run_completed)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.open()
        yield
        await scheduler.shutdown()
        database.close()

    app = FastAPI(
        title="Settlement Gateway",
        description="Merchant settlement aggregation and payout service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.database = database
    app.state.orchestrator = orchestrator
    app.state.scheduler = scheduler
    app.state.clock = clock

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(RequestContextMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name, "running_jobs": scheduler.in_flight}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(settlements.router, prefix="/v1", tags=["settlements"])
    app.include_router(transactions.router, prefix="/v1", tags=["transactions"])

    return app


app = create_app()
