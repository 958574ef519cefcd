from typing import Optional
"""
API Endpoints für Produktion: Chargen, Trays und Stufenwechsel
"""
from datetime import datetime, timedelta
from uuid import UUID
from fastapi import APIRouter, HTTPException, status, Query
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload

from app.api.deps import DBSession, Pagination, CurrentUser, raise_http
from app.core.exceptions import ProductionError
from app.models.enums import CropStage
from app.models.order import Order
from app.models.product import GrowPlan
from app.models.production import GrowBatch, Tray
from app.schemas.production import (
    GrowBatchCreate, GrowBatchResponse, TrayResponse, TrayListResponse,
    StageTimestampRequest, BulkTrayRequest, AdvanceResponse, BulkAdvanceResponse,
    RevertRequest, ShiftRequest, ShiftResponse, CancelTrayRequest,
    WateringResponse, BulkCountResponse, ReadinessCheckResponse,
)
from app.services.crop_timing import format_duration
from app.services.lifecycle import LifecycleMonitor

router = APIRouter()


def _seconds(value: Optional[timedelta]) -> Optional[float]:
    return value.total_seconds() if value is not None else None


def tray_response(monitor: LifecycleMonitor, tray: Tray, now: Optional[datetime] = None) -> TrayResponse:
    """Tray mit beim Lesen berechneten Zeiten"""
    timings = monitor.timings(tray, now)
    response = TrayResponse.model_validate(tray)
    response.stage_age_seconds = _seconds(timings.stage_age)
    response.time_to_next_stage_seconds = _seconds(timings.time_to_next_stage)
    response.total_age_seconds = _seconds(timings.total_age)
    response.stage_age_display = timings.stage_age_display
    response.time_to_next_stage_display = timings.time_to_next_stage_display
    response.total_age_display = timings.total_age_display
    response.ready_to_advance = timings.ready_to_advance
    response.ready_to_harvest = timings.ready_to_harvest
    response.expected_harvest_at = timings.expected_harvest_at
    return response


def batch_response(monitor: LifecycleMonitor, batch: GrowBatch, now: Optional[datetime] = None) -> GrowBatchResponse:
    response = GrowBatchResponse.model_validate(batch)
    response.trays = [tray_response(monitor, t, now) for t in batch.trays]
    return response


# ============== Chargen ==============

@router.get("/batches", response_model=list[GrowBatchResponse])
async def list_batches(
    db: DBSession,
    pagination: Pagination,
    grow_plan_id: Optional[UUID] = None,
    production_plan_id: Optional[UUID] = None,
):
    """Wachstumschargen, neueste zuerst."""
    query = select(GrowBatch).options(selectinload(GrowBatch.trays))
    if grow_plan_id:
        query = query.where(GrowBatch.grow_plan_id == grow_plan_id)
    if production_plan_id:
        query = query.where(GrowBatch.production_plan_id == production_plan_id)

    query = query.order_by(GrowBatch.created_at.desc())
    batches = db.execute(query.offset(pagination.offset).limit(pagination.page_size)).scalars().all()

    monitor = LifecycleMonitor(db)
    return [batch_response(monitor, b) for b in batches]


@router.get("/batches/{batch_id}", response_model=GrowBatchResponse)
async def get_batch(batch_id: UUID, db: DBSession):
    batch = db.get(GrowBatch, batch_id)
    if not batch:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Wachstumscharge nicht gefunden"
        )
    return batch_response(LifecycleMonitor(db), batch)


@router.post("/batches", response_model=GrowBatchResponse, status_code=status.HTTP_201_CREATED)
async def create_batch(data: GrowBatchCreate, db: DBSession, user: CurrentUser):
    """
    Charge ohne Produktionsplan anlegen.

    Start-Stufe ist Einweichen, bei Sorten ohne Einweichzeit direkt Keimung.
    """
    grow_plan = db.get(GrowPlan, data.grow_plan_id)
    if not grow_plan:
        raise HTTPException(status_code=404, detail="Wachstumsprofil nicht gefunden")
    if data.order_id and not db.get(Order, data.order_id):
        raise HTTPException(status_code=404, detail="Bestellung nicht gefunden")

    monitor = LifecycleMonitor(db)
    try:
        batch = monitor.start_batch(
            grow_plan,
            data.tray_numbers,
            started_at=data.started_at,
            order_ids=[data.order_id] * len(data.tray_numbers) if data.order_id else None,
            regal_position=data.regal_position,
            notes=data.notizen,
            user_name=user.get("username"),
        )
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    db.refresh(batch)
    return batch_response(monitor, batch)


# ============== Trays ==============

@router.get("/trays", response_model=TrayListResponse)
async def list_trays(
    db: DBSession,
    pagination: Pagination,
    stage: Optional[CropStage] = None,
    order_id: Optional[UUID] = None,
    production_plan_id: Optional[UUID] = None,
    live_only: bool = Query(False, description="Nur Trays, die nicht geerntet oder verworfen sind"),
):
    """
    Trays mit abgeleiteten Zeiten.

    Alter, Restzeit und erwartete Ernte werden beim Lesen berechnet.
    """
    query = select(Tray)
    if stage:
        query = query.where(Tray.current_stage == stage)
    if order_id:
        query = query.where(Tray.order_id == order_id)
    if production_plan_id:
        query = query.where(Tray.production_plan_id == production_plan_id)
    if live_only:
        query = query.where(Tray.current_stage.not_in([CropStage.HARVESTED, CropStage.CANCELLED]))

    total = db.execute(select(func.count()).select_from(query.subquery())).scalar() or 0
    query = query.order_by(Tray.tray_number).offset(pagination.offset).limit(pagination.page_size)
    trays = db.execute(query).scalars().all()

    monitor = LifecycleMonitor(db)
    now = datetime.utcnow()
    return TrayListResponse(items=[tray_response(monitor, t, now) for t in trays], total=total)


@router.post("/trays/advance-bulk", response_model=BulkAdvanceResponse)
async def advance_trays_bulk(data: BulkTrayRequest, db: DBSession, user: CurrentUser):
    """
    Mehrere Trays weiterschalten.

    Ist ein Tray nicht weiterschaltbar, wird kein Tray geändert und alle
    Fehler werden gemeinsam gemeldet.
    """
    try:
        result = LifecycleMonitor(db).advance_stage_bulk(data.tray_ids, data.at, user.get("username"))
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    return BulkAdvanceResponse(
        items=[AdvanceResponse(tray_id=tray_id, new_stage=stage) for tray_id, stage in result.items()]
    )


@router.post("/trays/watering/suspend", response_model=BulkCountResponse)
async def suspend_watering(data: BulkTrayRequest, db: DBSession, user: CurrentUser):
    try:
        changed = LifecycleMonitor(db).suspend_watering_bulk(data.tray_ids, data.at)
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    return BulkCountResponse(changed=changed)


@router.post("/trays/watering/resume", response_model=BulkCountResponse)
async def resume_watering(data: BulkTrayRequest, db: DBSession, user: CurrentUser):
    try:
        changed = LifecycleMonitor(db).resume_watering_bulk(data.tray_ids)
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    return BulkCountResponse(changed=changed)


@router.get("/trays/{tray_id}", response_model=TrayResponse)
async def get_tray(tray_id: UUID, db: DBSession):
    tray = db.get(Tray, tray_id)
    if not tray:
        raise HTTPException(status_code=404, detail="Tray nicht gefunden")
    return tray_response(LifecycleMonitor(db), tray)


@router.post("/trays/{tray_id}/advance", response_model=AdvanceResponse)
async def advance_tray(tray_id: UUID, data: StageTimestampRequest, db: DBSession, user: CurrentUser):
    """Tray in die nächste Stufe versetzen (die ganze Charge wechselt mit)."""
    try:
        new_stage = LifecycleMonitor(db).advance_stage(tray_id, data.at, user.get("username"))
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    return AdvanceResponse(tray_id=tray_id, new_stage=new_stage)


@router.post("/trays/{tray_id}/revert", response_model=TrayResponse)
async def revert_tray(tray_id: UUID, data: RevertRequest, db: DBSession, user: CurrentUser):
    """Tray auf eine frühere Stufe zurücksetzen."""
    monitor = LifecycleMonitor(db)
    try:
        monitor.revert_stage(tray_id, data.target_stage, user.get("username"), data.reason)
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    return tray_response(monitor, monitor.get_tray(tray_id))


@router.post("/trays/{tray_id}/cancel", response_model=TrayResponse)
async def cancel_tray(tray_id: UUID, data: CancelTrayRequest, db: DBSession, user: CurrentUser):
    """Tray verwerfen."""
    monitor = LifecycleMonitor(db)
    try:
        tray = monitor.cancel_tray(tray_id, data.reason, user_name=user.get("username"))
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    return tray_response(monitor, tray)


@router.post("/trays/{tray_id}/shift", response_model=ShiftResponse)
async def shift_tray(tray_id: UUID, data: ShiftRequest, db: DBSession, user: CurrentUser):
    """Startzeitpunkt verschieben, alle Stufen-Zeitpunkte wandern mit."""
    try:
        delta = LifecycleMonitor(db).shift_planting(tray_id, data.new_start, user.get("username"))
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    return ShiftResponse(
        tray_id=tray_id,
        shifted_seconds=delta.total_seconds(),
        shifted_display=format_duration(abs(delta)),
    )


@router.post("/trays/{tray_id}/ready", response_model=TrayResponse)
async def flag_tray_ready(tray_id: UUID, data: StageTimestampRequest, db: DBSession, user: CurrentUser):
    """Tray manuell als erntereif markieren."""
    monitor = LifecycleMonitor(db)
    try:
        tray = monitor.flag_ready(tray_id, data.at)
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    return tray_response(monitor, tray)


@router.post("/trays/{tray_id}/watering/toggle", response_model=WateringResponse)
async def toggle_watering(tray_id: UUID, db: DBSession, user: CurrentUser):
    try:
        suspended = LifecycleMonitor(db).toggle_watering(tray_id)
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    return WateringResponse(tray_id=tray_id, watering_suspended=suspended)


# ============== Erntereife ==============

@router.post("/readiness-check", response_model=ReadinessCheckResponse)
async def run_readiness_check(db: DBSession, user: CurrentUser):
    """
    Erntereife manuell prüfen.
    Läuft sonst stündlich als Celery-Task.
    """
    order_ids = LifecycleMonitor(db).check_readiness()
    db.commit()
    return ReadinessCheckResponse(order_ids=order_ids)
