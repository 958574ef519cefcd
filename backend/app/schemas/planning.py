"""
Pydantic Schemas für Produktionspläne
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict

from app.models.enums import PlanStatus


class PlanContributionResponse(BaseModel):
    """Beitrag einer Bestellung zu einem Plan"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    trays: int
    grams: Decimal
    is_active: bool
    removed_at: Optional[datetime] = None
    removal_reason: Optional[str] = None
    created_at: datetime


class ProductionPlanResponse(BaseModel):
    """Schema für Produktionsplan-Antwort"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    seed_id: UUID
    grow_plan_id: UUID
    order_id: Optional[UUID]

    harvest_date: date
    plant_by_date: date
    seed_soak_date: Optional[date]

    trays_needed: int
    grams_needed: Decimal

    status: PlanStatus
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    calculation_details: Optional[dict] = None
    aggregation_history: list[dict] = []
    contributions: list[PlanContributionResponse] = []

    created_at: datetime
    updated_at: datetime

    # Expandiert
    seed_name: Optional[str] = None
    overdue: bool = False
    urgent: bool = False


class ProductionPlanListResponse(BaseModel):
    items: list[ProductionPlanResponse]
    total: int


class PlanningIssueResponse(BaseModel):
    """Problem bei der Planung einer Sorte"""
    seed_id: Optional[UUID] = None
    variety: str
    issue: str
    severity: str
    message: str
    harvest_date: Optional[date] = None
    plant_date: Optional[date] = None
    days_overdue: Optional[int] = None


class PlanningResultResponse(BaseModel):
    """Ergebnis einer Planung"""
    success: bool
    plans: list[ProductionPlanResponse] = []
    issues: list[PlanningIssueResponse] = []


class PlanApproveRequest(BaseModel):
    approver: Optional[str] = Field(None, max_length=200, description="Freigebende Person")


class PlanCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Grund für die Stornierung")


class CreateTraysRequest(BaseModel):
    """Trays für einen freigegebenen Plan anlegen"""
    tray_numbers: list[str] = Field(..., min_length=1, description="Tray-Nummern")
    started_at: Optional[datetime] = Field(None, description="Start (Einweichen bzw. Aussaat)")
    regal_position: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None
