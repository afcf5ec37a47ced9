"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from settlement_gateway.domain.enums import SettlementType


class RunSettlementRequest(BaseModel):
    """Request body for POST /v1/settlements/{settlement_id}/run"""

    type: SettlementType = Field(..., description="full-settlement or business-settlement")
    business_id: Optional[UUID] = Field(None, description="Required for business-settlement runs")
    force_run: bool = Field(False, description="Settle every unsettled business regardless of payout date")
    add_past: bool = Field(False, description="Include businesses whose payout date has passed")


class RunSettlementResponse(BaseModel):
    """Response for POST /v1/settlements/{settlement_id}/run"""

    settlement_id: str
    status: str
    is_running: bool
    message: str


class DueSchema(BaseModel):
    amount_minor: int
    businesses: int


class OverviewSchema(BaseModel):
    businesses: int
    total_amount_minor: int
    amount_minor: int
    total_fee_minor: int
    total_vat_minor: int
    revenue_minor: int
    due_today: DueSchema
    past_due: DueSchema


class SettlementResponse(BaseModel):
    """Response for GET /v1/settlements/{settlement_id}"""

    settlement_id: str
    code: str
    description: str
    period_date: date
    status: str
    is_running: bool
    is_settled: bool
    total_amount_minor: int
    total_amount: str
    settled_amount_minor: int
    settled_shared_minor: int
    settled_businesses: List[str]
    overview: OverviewSchema
    last_run_at: Optional[str] = None
    settled_at: Optional[str] = None


class HistoryItem(BaseModel):
    """Single run in settlement history"""

    history_id: str
    run_type: str
    amount_settled_minor: int
    amount_shared_minor: int
    currency: str
    groups: List[Dict[str, Any]]
    analytics: Dict[str, Any]
    created_at: str


class HistoryResponse(BaseModel):
    """Response for GET /v1/settlements/{settlement_id}/histories"""

    settlement_id: str
    histories: List[HistoryItem]


class AnalyticsResponse(BaseModel):
    """Response for GET /v1/settlements/{settlement_id}/businesses/{business_id}/analytics"""

    settlement_id: str
    business_id: str
    total_amount_minor: int
    fee_minor: int
    vat_minor: int
    revenue_minor: int
    provider_fee_minor: int
    count: int
    amount_minor: int
    amount: str


class RefreshDueResponse(BaseModel):
    """Response for POST /v1/settlements/refresh-due"""

    refreshed: int


class ReportTransactionResponse(BaseModel):
    """Response for POST /v1/transactions/{reference}/report"""

    reference: str
    settlement_id: str
    settlement_code: str
    period_date: date
