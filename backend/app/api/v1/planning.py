"""
API Endpoints für Produktionspläne
"""
from datetime import date
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload

from app.api.deps import DBSession, Pagination, CurrentUser, raise_http, require_role
from app.config import get_settings
from app.core.exceptions import ProductionError
from app.models.enums import PlanStatus
from app.models.order import Order
from app.models.planning import ProductionPlan
from app.schemas.planning import (
    ProductionPlanResponse, ProductionPlanListResponse, PlanningIssueResponse, PlanningResultResponse,
    PlanApproveRequest, PlanCancelRequest, CreateTraysRequest,
)
from app.schemas.production import GrowBatchResponse
from app.api.v1.production import batch_response
from app.services.lifecycle import LifecycleMonitor
from app.services.planning import PlanningService, PlanningResult

router = APIRouter()
settings = get_settings()


def plan_response(plan: ProductionPlan, today: Optional[date] = None) -> ProductionPlanResponse:
    response = ProductionPlanResponse.model_validate(plan)
    response.seed_name = plan.seed.name if plan.seed else None
    response.overdue = plan.is_overdue(today)
    response.urgent = plan.is_urgent(settings.urgent_plan_days, today)
    return response


def planning_result_response(result: PlanningResult) -> PlanningResultResponse:
    seen = set()
    plans = []
    for plan in result.plans:
        if plan.id not in seen:
            seen.add(plan.id)
            plans.append(plan_response(plan))
    return PlanningResultResponse(
        success=result.success,
        plans=plans,
        issues=[PlanningIssueResponse.model_validate(i, from_attributes=True) for i in result.issues],
    )


def _get_order(db: DBSession, order_id: UUID) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Bestellung nicht gefunden")
    return order


# ============== Planung für Bestellungen ==============

@router.post("/orders/{order_id}/generate", response_model=PlanningResultResponse)
async def generate_plans(order_id: UUID, db: DBSession, user: CurrentUser, today: Optional[date] = None):
    """
    Produktionspläne für eine Bestellung berechnen.

    Ist für Sorte und Erntedatum bereits ein offener Plan vorhanden, wird
    der Bedarf dort gebündelt. Wiederholte Aufrufe ändern nichts.
    """
    order = _get_order(db, order_id)
    try:
        result = PlanningService(db).generate_plans_for_order(order, today=today)
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    return planning_result_response(result)


@router.post("/orders/{order_id}/update", response_model=PlanningResultResponse)
async def update_plans(order_id: UUID, db: DBSession, user: CurrentUser, today: Optional[date] = None):
    """Pläne einer geänderten Bestellung neu berechnen."""
    order = _get_order(db, order_id)
    try:
        result = PlanningService(db).update_plans_for_order(order, today=today)
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    return planning_result_response(result)


# ============== Pläne ==============

@router.get("/plans", response_model=ProductionPlanListResponse)
async def list_plans(
    db: DBSession,
    pagination: Pagination,
    status_filter: Optional[PlanStatus] = Query(None, alias="status"),
    seed_id: Optional[UUID] = None,
    harvest_from: Optional[date] = None,
    harvest_to: Optional[date] = None,
):
    """
    Produktionspläne auflisten, nach Aussaattermin sortiert.

    Filter:
    - **status**: DRAFT, ACTIVE, COMPLETED, CANCELLED
    - **seed_id**: nur Pläne einer Sorte
    - **harvest_from / harvest_to**: Zeitraum des Erntedatums
    """
    query = select(ProductionPlan).options(selectinload(ProductionPlan.contributions))
    if status_filter:
        query = query.where(ProductionPlan.status == status_filter)
    if seed_id:
        query = query.where(ProductionPlan.seed_id == seed_id)
    if harvest_from:
        query = query.where(ProductionPlan.harvest_date >= harvest_from)
    if harvest_to:
        query = query.where(ProductionPlan.harvest_date <= harvest_to)

    total = db.execute(select(func.count()).select_from(query.subquery())).scalar() or 0

    query = query.order_by(ProductionPlan.plant_by_date, ProductionPlan.created_at)
    plans = db.execute(query.offset(pagination.offset).limit(pagination.page_size)).scalars().all()

    return ProductionPlanListResponse(items=[plan_response(p) for p in plans], total=total)


@router.get("/plans/overdue", response_model=ProductionPlanListResponse)
async def list_overdue_plans(db: DBSession, today: Optional[date] = None):
    """Entwürfe, deren Aussaattermin überschritten oder knapp ist."""
    plans = PlanningService(db).list_overdue_plans(today)
    return ProductionPlanListResponse(items=[plan_response(p, today) for p in plans], total=len(plans))


@router.get("/plans/{plan_id}", response_model=ProductionPlanResponse)
async def get_plan(plan_id: UUID, db: DBSession):
    plan = db.get(ProductionPlan, plan_id)
    if not plan:
        raise HTTPException(status_code=404, detail="Produktionsplan nicht gefunden")
    return plan_response(plan)


@router.post(
    "/plans/{plan_id}/approve",
    response_model=ProductionPlanResponse,
    dependencies=[Depends(require_role(["admin", "production_planner"]))],
)
async def approve_plan(plan_id: UUID, data: PlanApproveRequest, db: DBSession, user: CurrentUser):
    """Entwurf freigeben (DRAFT -> ACTIVE)."""
    approver = data.approver or user.get("username") or "unbekannt"
    try:
        plan = PlanningService(db).approve_plan(plan_id, approver)
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    return plan_response(plan)


@router.post("/plans/{plan_id}/cancel", response_model=ProductionPlanResponse)
async def cancel_plan(plan_id: UUID, data: PlanCancelRequest, db: DBSession, user: CurrentUser):
    """Offenen Plan stornieren. Die Mengen bleiben auf dem letzten Stand."""
    try:
        plan = PlanningService(db).cancel_plan(plan_id, data.reason)
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    return plan_response(plan)


@router.post("/plans/{plan_id}/complete", response_model=ProductionPlanResponse)
async def complete_plan(plan_id: UUID, db: DBSession, user: CurrentUser):
    """Freigegebenen Plan manuell abschließen."""
    try:
        plan = PlanningService(db).complete_plan(plan_id)
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    return plan_response(plan)


@router.post(
    "/plans/{plan_id}/trays",
    response_model=GrowBatchResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_trays(plan_id: UUID, data: CreateTraysRequest, db: DBSession, user: CurrentUser):
    """
    Trays für einen freigegebenen Plan anlegen.

    Die Trays werden in Reihenfolge der Beiträge den Bestellungen zugeordnet.
    """
    try:
        batch = PlanningService(db).create_trays_for_plan(
            plan_id,
            data.tray_numbers,
            started_at=data.started_at,
            regal_position=data.regal_position,
            notes=data.notes,
            user_name=user.get("username"),
        )
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    db.refresh(batch)
    return batch_response(LifecycleMonitor(db), batch)
