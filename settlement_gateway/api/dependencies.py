"""Dependency injection for FastAPI endpoints"""

from datetime import date
from typing import Callable, Generator

from fastapi import Request
from sqlalchemy.orm import Session

from settlement_gateway.infrastructure.database.session import Database
from settlement_gateway.services.orchestrator import SettlementOrchestrator


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_db(request: Request) -> Generator[Session, None, None]:
    """Request-scoped session from the application's database"""
    db = get_database(request).new_session()
    try:
        yield db
    finally:
        db.close()


def get_orchestrator(request: Request) -> SettlementOrchestrator:
    return request.app.state.orchestrator


def get_clock(request: Request) -> Callable[[], date]:
    """Provide the settlement-day clock"""
    return request.app.state.clock
