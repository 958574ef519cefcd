from typing import Optional
"""
API Endpoints für Ernten
"""
from datetime import date
from uuid import UUID
from fastapi import APIRouter, Body, status
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload

from app.api.deps import DBSession, Pagination, CurrentUser, raise_http
from app.core.exceptions import ProductionError
from app.models.production import Harvest, HarvestLine
from app.schemas.harvest import HarvestResponse, HarvestListResponse
from app.services.harvest import HarvestService

router = APIRouter()


def _harvest_response(harvest: Harvest) -> HarvestResponse:
    response = HarvestResponse.model_validate(harvest)
    response.seed_name = harvest.seed.name if harvest.seed else None
    return response


@router.get("", response_model=HarvestListResponse)
async def list_harvests(
    db: DBSession,
    pagination: Pagination,
    seed_id: Optional[UUID] = None,
    von_datum: Optional[date] = None,
    bis_datum: Optional[date] = None,
):
    """Ernten auflisten, neueste zuerst."""
    query = select(Harvest).options(selectinload(Harvest.lines).selectinload(HarvestLine.tray))
    if seed_id:
        query = query.where(Harvest.seed_id == seed_id)
    if von_datum:
        query = query.where(Harvest.harvest_date >= von_datum)
    if bis_datum:
        query = query.where(Harvest.harvest_date <= bis_datum)

    total = db.execute(select(func.count()).select_from(query.subquery())).scalar() or 0
    query = query.order_by(Harvest.harvest_date.desc(), Harvest.created_at.desc())
    harvests = db.execute(query.offset(pagination.offset).limit(pagination.page_size)).scalars().all()

    return HarvestListResponse(items=[_harvest_response(h) for h in harvests], total=total)


@router.get("/{harvest_id}", response_model=HarvestResponse)
async def get_harvest(harvest_id: UUID, db: DBSession):
    try:
        harvest = HarvestService(db).get_harvest(harvest_id)
    except ProductionError as e:
        raise_http(db, e)
    return _harvest_response(harvest)


@router.post("", response_model=HarvestResponse, status_code=status.HTTP_201_CREATED)
async def submit_harvest(db: DBSession, user: CurrentUser, data: dict = Body(...)):
    """
    Ernte erfassen.

    Alle Fehler (Format, Trays, Sorte, Gewicht/Prozent) werden gemeinsam
    gemeldet. Trays mit 100% werden abgeschlossen, Teilernten protokolliert.
    """
    try:
        harvest = HarvestService(db).submit_harvest(data, user_name=user.get("username"))
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    db.refresh(harvest)
    return _harvest_response(harvest)


@router.put("/{harvest_id}", response_model=HarvestResponse)
async def update_harvest(harvest_id: UUID, db: DBSession, user: CurrentUser, data: dict = Body(...)):
    """
    Ernte korrigieren.

    Alle Positionen werden ersetzt. Trays, die diese Ernte abgeschlossen
    hatte, kehren vorher in ihre ursprüngliche Stufe zurück.
    """
    try:
        harvest = HarvestService(db).update_harvest(harvest_id, data, user_name=user.get("username"))
    except ProductionError as e:
        raise_http(db, e)
    db.commit()
    db.refresh(harvest)
    return _harvest_response(harvest)
