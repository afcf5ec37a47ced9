"""POST /v1/transactions/{reference}/report - Tag a payment into today's settlement"""

import logging
from datetime import date
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from settlement_gateway.api.dependencies import get_clock, get_db, get_request_id
from settlement_gateway.api.v1.schemas import ReportTransactionResponse
from settlement_gateway.domain.exceptions import NotFoundError, SettlementValidationError
from settlement_gateway.services.reporting import SettlementReporter

router = APIRouter()


@router.post("/transactions/{reference}/report", response_model=ReportTransactionResponse)
def report_transaction(
    reference: str,
    request: Request,
    db: Session = Depends(get_db),
    clock: Callable[[], date] = Depends(get_clock),
):
    """
    Add a successful payment-link transaction to the settlement for today.

    The settlement is created on first use and its overview is refreshed.
    """
    request_id = get_request_id(request)

    try:
        settlement = SettlementReporter(db).report_transaction(reference, clock())
        db.commit()

    except NotFoundError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))

    except SettlementValidationError as e:
        db.rollback()
        logging.warning(f"Transaction not reportable: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=400, detail=str(e))

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    return ReportTransactionResponse(
        reference=reference,
        settlement_id=str(settlement.id),
        settlement_code=settlement.code,
        period_date=settlement.period_date,
    )
