"""Settlement endpoints - run trigger, status, history, analytics and overview refresh"""

import logging
from datetime import date
from typing import Callable, List
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from settlement_gateway.api.dependencies import get_clock, get_db, get_orchestrator, get_request_id
from settlement_gateway.api.v1.schemas import (
    AnalyticsResponse,
    DueSchema,
    HistoryItem,
    HistoryResponse,
    OverviewSchema,
    RefreshDueResponse,
    RunSettlementRequest,
    RunSettlementResponse,
    SettlementResponse,
)
from settlement_gateway.config import settings
from settlement_gateway.domain.enums import SettlementStatus
from settlement_gateway.domain.exceptions import (
    FundingWalletNotFoundError,
    NotFoundError,
    SettlementPreconditionError,
    SettlementValidationError,
)
from settlement_gateway.domain.models import RunOptions
from settlement_gateway.infrastructure.database.models import Settlement
from settlement_gateway.infrastructure.database.repositories import BusinessRepository, SettlementRepository
from settlement_gateway.services.aggregator import SettlementAggregator
from settlement_gateway.services.orchestrator import SettlementOrchestrator
from settlement_gateway.services.overview import SettlementOverviewRefresher
from settlement_gateway.utils.money import format_amount

router = APIRouter()

RUN_ACCEPTED_MESSAGE = "currently processing. you will be notified when done"


def _to_response(settlement: Settlement, settled_businesses: List[str]) -> SettlementResponse:
    return SettlementResponse(
        settlement_id=str(settlement.id),
        code=settlement.code,
        description=settlement.description,
        period_date=settlement.period_date,
        status=settlement.status,
        is_running=settlement.is_running,
        is_settled=settlement.is_settled,
        total_amount_minor=settlement.total_amount_minor,
        total_amount=format_amount(settlement.total_amount_minor, settings.default_currency),
        settled_amount_minor=settlement.settled_amount_minor,
        settled_shared_minor=settlement.settled_shared_minor,
        settled_businesses=settled_businesses,
        overview=OverviewSchema(
            businesses=settlement.overview_businesses,
            total_amount_minor=settlement.overview_total_amount_minor,
            amount_minor=settlement.overview_amount_minor,
            total_fee_minor=settlement.overview_total_fee_minor,
            total_vat_minor=settlement.overview_total_vat_minor,
            revenue_minor=settlement.overview_revenue_minor,
            due_today=DueSchema(
                amount_minor=settlement.due_today_amount_minor,
                businesses=settlement.due_today_businesses,
            ),
            past_due=DueSchema(
                amount_minor=settlement.past_due_amount_minor,
                businesses=settlement.past_due_businesses,
            ),
        ),
        last_run_at=settlement.last_run_at.isoformat() if settlement.last_run_at else None,
        settled_at=settlement.settled_at.isoformat() if settlement.settled_at else None,
    )


def _get_settlement(repo: SettlementRepository, settlement_id: UUID) -> Settlement:
    settlement = repo.get_by_id(settlement_id)
    if settlement is None:
        raise HTTPException(status_code=404, detail="settlement does not exist")
    return settlement


@router.post("/settlements/{settlement_id}/run", response_model=RunSettlementResponse)
async def run_settlement(
    settlement_id: UUID,
    request_body: RunSettlementRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
):
    """
    Trigger a settlement run.

    Flow:
    1. Validate run parameters
    2. Check running / completed state and the funding wallet balance
    3. Claim the platform-wide run slot
    4. Return immediately while lumps are paid out in the background
    """
    request_id = get_request_id(request)
    options = RunOptions(
        run_type=request_body.type,
        business_id=request_body.business_id,
        force_run=request_body.force_run,
        add_past=request_body.add_past,
    )

    try:
        handle = await orchestrator.run_settlement(settlement_id, options)

    except SettlementValidationError as e:
        logging.warning(f"Invalid run request: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=400, detail=str(e))

    except FundingWalletNotFoundError as e:
        logging.error(f"Funding wallet missing: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail=str(e))

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    except SettlementPreconditionError as e:
        logging.warning(f"Settlement run rejected: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=403, detail=str(e))

    except Exception as e:
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    # Keeps the request cycle open until the run finishes
    background_tasks.add_task(handle.wait)

    return RunSettlementResponse(
        settlement_id=str(settlement_id),
        status=SettlementStatus.PROCESSING.value,
        is_running=True,
        message=RUN_ACCEPTED_MESSAGE,
    )


@router.get("/settlements/{settlement_id}", response_model=SettlementResponse)
def get_settlement(settlement_id: UUID, db: Session = Depends(get_db)):
    """Current state, overview and settled businesses of a settlement"""
    repo = SettlementRepository(db)
    settlement = _get_settlement(repo, settlement_id)
    settled = sorted(str(b) for b in repo.settled_business_ids(settlement.id))
    return _to_response(settlement, settled)


@router.get("/settlements/{settlement_id}/histories", response_model=HistoryResponse)
def get_settlement_histories(
    settlement_id: UUID,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """
    Retrieve recent runs of a settlement, newest first.

    Returns:
        Run records with the executed groups and analytics snapshot
    """
    repo = SettlementRepository(db)
    _get_settlement(repo, settlement_id)

    histories = [
        HistoryItem(
            history_id=str(h.id),
            run_type=h.run_type,
            amount_settled_minor=h.amount_settled_minor,
            amount_shared_minor=h.amount_shared_minor,
            currency=h.currency,
            groups=h.groups,
            analytics=h.analytics,
            created_at=h.created_at.isoformat(),
        )
        for h in repo.list_histories(settlement_id, limit=limit)
    ]

    return HistoryResponse(settlement_id=str(settlement_id), histories=histories)


@router.get("/settlements/{settlement_id}/businesses/{business_id}/analytics", response_model=AnalyticsResponse)
def get_business_analytics(settlement_id: UUID, business_id: UUID, db: Session = Depends(get_db)):
    _get_settlement(SettlementRepository(db), settlement_id)
    business = BusinessRepository(db).get_by_id(business_id)
    if business is None:
        raise HTTPException(status_code=404, detail="business does not exist")

    report = SettlementAggregator(db).aggregate_settlement_analytics(settlement_id, business_id)

    return AnalyticsResponse(
        settlement_id=str(settlement_id),
        business_id=str(business_id),
        total_amount_minor=report.total_amount,
        fee_minor=report.fee,
        vat_minor=report.vat,
        revenue_minor=report.revenue,
        provider_fee_minor=report.provider_fee,
        count=report.count,
        amount_minor=report.amount,
        amount=format_amount(report.amount, business.currency),
    )


@router.post("/settlements/refresh-due", response_model=RefreshDueResponse)
def refresh_due_settlements(
    request: Request,
    db: Session = Depends(get_db),
    clock: Callable[[], date] = Depends(get_clock),
):
    """Recompute the overview of every open settlement"""
    request_id = get_request_id(request)
    try:
        refreshed = SettlementOverviewRefresher(db).refresh_open(clock())
        db.commit()
    except Exception as e:
        db.rollback()
        logging.error(f"Overview refresh failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    return RefreshDueResponse(refreshed=refreshed)


@router.post("/settlements/{settlement_id}/refresh", response_model=SettlementResponse)
def refresh_settlement(
    settlement_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    clock: Callable[[], date] = Depends(get_clock),
):
    request_id = get_request_id(request)
    repo = SettlementRepository(db)
    settlement = _get_settlement(repo, settlement_id)

    try:
        SettlementOverviewRefresher(db).refresh(settlement_id, clock())
        db.commit()
    except Exception as e:
        db.rollback()
        logging.error(f"Overview refresh failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    settled = sorted(str(b) for b in repo.settled_business_ids(settlement_id))
    return _to_response(settlement, settled)
