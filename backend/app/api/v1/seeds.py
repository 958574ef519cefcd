from typing import Optional
"""
API Endpoints für Saatgut, Wachstumsprofile und Mischungen
"""
from datetime import date
from uuid import UUID
from fastapi import APIRouter, HTTPException, status
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from app.api.deps import DBSession, Pagination
from app.models.product import GrowPlan, ProductMix, MixComponent
from app.models.production import Tray
from app.models.seed import Seed
from app.schemas.product import (
    GrowPlanCreate, GrowPlanUpdate, GrowPlanResponse, GrowPlanListResponse,
    YieldStatisticsResponse, ProductMixCreate, ProductMixResponse,
)
from app.schemas.seed import SeedCreate, SeedUpdate, SeedResponse, SeedListResponse
from app.services.yield_calculator import HarvestYieldCalculator

router = APIRouter()


# ============== Seed Endpoints ==============

@router.get("", response_model=SeedListResponse)
async def list_seeds(
    db: DBSession,
    pagination: Pagination,
    aktiv: Optional[bool] = None,
    search: Optional[str] = None
):
    """
    Liste aller Saatgut-Sorten abrufen.

    - **aktiv**: Optional - nur aktive/inaktive Sorten
    - **search**: Optional - Suche nach Name
    """
    query = select(Seed)

    if aktiv is not None:
        query = query.where(Seed.aktiv == aktiv)

    if search:
        query = query.where(Seed.name.ilike(f"%{search}%"))

    count_query = select(func.count()).select_from(query.subquery())
    total = db.execute(count_query).scalar() or 0

    query = query.order_by(Seed.name).offset(pagination.offset).limit(pagination.page_size)
    seeds = db.execute(query).scalars().all()

    return SeedListResponse(
        items=[SeedResponse.model_validate(s) for s in seeds],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size
    )


@router.get("/{seed_id}", response_model=SeedResponse)
async def get_seed(seed_id: UUID, db: DBSession):
    """Einzelne Saatgut-Sorte abrufen."""
    seed = db.get(Seed, seed_id)
    if not seed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Saatgut-Sorte nicht gefunden"
        )
    return SeedResponse.model_validate(seed)


@router.post("", response_model=SeedResponse, status_code=status.HTTP_201_CREATED)
async def create_seed(seed_data: SeedCreate, db: DBSession):
    """Neue Saatgut-Sorte anlegen."""
    seed = Seed(**seed_data.model_dump())
    db.add(seed)
    db.commit()
    db.refresh(seed)

    return SeedResponse.model_validate(seed)


@router.patch("/{seed_id}", response_model=SeedResponse)
async def update_seed(seed_id: UUID, seed_data: SeedUpdate, db: DBSession):
    """Saatgut-Sorte aktualisieren."""
    seed = db.get(Seed, seed_id)
    if not seed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Saatgut-Sorte nicht gefunden"
        )

    update_data = seed_data.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        setattr(seed, field, value)

    db.commit()
    db.refresh(seed)

    return SeedResponse.model_validate(seed)


@router.delete("/{seed_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_seed(seed_id: UUID, db: DBSession):
    """
    Saatgut-Sorte löschen.

    Hinweis: Kann nicht gelöscht werden, wenn Wachstumsprofile existieren.
    Alternativ auf inaktiv setzen.
    """
    seed = db.get(Seed, seed_id)
    if not seed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Saatgut-Sorte nicht gefunden"
        )

    plan_count = db.execute(
        select(func.count()).where(GrowPlan.seed_id == seed_id)
    ).scalar()

    if plan_count > 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Kann nicht gelöscht werden: {plan_count} Wachstumsprofile vorhanden. "
                   "Bitte stattdessen deaktivieren."
        )

    db.delete(seed)
    db.commit()


# ============== GrowPlan Endpoints ==============

grow_plans_router = APIRouter(prefix="/grow-plans", tags=["Wachstumsprofile"])


@grow_plans_router.get("", response_model=GrowPlanListResponse)
async def list_grow_plans(
    db: DBSession,
    seed_id: Optional[UUID] = None,
    is_active: Optional[bool] = None,
):
    """Wachstumsprofile auflisten, jüngstes zuerst."""
    query = select(GrowPlan)
    if seed_id:
        query = query.where(GrowPlan.seed_id == seed_id)
    if is_active is not None:
        query = query.where(GrowPlan.is_active == is_active)

    plans = db.execute(query.order_by(GrowPlan.created_at.desc())).scalars().all()
    return GrowPlanListResponse(
        items=[GrowPlanResponse.model_validate(p) for p in plans],
        total=len(plans),
    )


@grow_plans_router.get("/{grow_plan_id}", response_model=GrowPlanResponse)
async def get_grow_plan(grow_plan_id: UUID, db: DBSession):
    grow_plan = db.get(GrowPlan, grow_plan_id)
    if not grow_plan:
        raise HTTPException(status_code=404, detail="Wachstumsprofil nicht gefunden")
    return GrowPlanResponse.model_validate(grow_plan)


@grow_plans_router.post("", response_model=GrowPlanResponse, status_code=status.HTTP_201_CREATED)
async def create_grow_plan(data: GrowPlanCreate, db: DBSession):
    """
    Neues Wachstumsprofil anlegen.

    Das jüngste aktive Profil einer Sorte wird für die Planung verwendet.
    """
    if not db.get(Seed, data.seed_id):
        raise HTTPException(status_code=404, detail="Saatgut-Sorte nicht gefunden")
    if data.germination_days + data.blackout_days + data.light_days == 0 and not data.days_to_maturity:
        raise HTTPException(
            status_code=400,
            detail="Stufendauern oder Gesamtdauer (days_to_maturity) erforderlich"
        )

    grow_plan = GrowPlan(**data.model_dump())
    db.add(grow_plan)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"Profil-Kürzel {data.code} existiert bereits")
    db.refresh(grow_plan)
    return GrowPlanResponse.model_validate(grow_plan)


@grow_plans_router.patch("/{grow_plan_id}", response_model=GrowPlanResponse)
async def update_grow_plan(grow_plan_id: UUID, data: GrowPlanUpdate, db: DBSession):
    """Wachstumsprofil aktualisieren."""
    grow_plan = db.get(GrowPlan, grow_plan_id)
    if not grow_plan:
        raise HTTPException(status_code=404, detail="Wachstumsprofil nicht gefunden")

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(grow_plan, field, value)

    db.commit()
    db.refresh(grow_plan)
    return GrowPlanResponse.model_validate(grow_plan)


@grow_plans_router.delete("/{grow_plan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_grow_plan(grow_plan_id: UUID, db: DBSession):
    """Wachstumsprofil löschen (nur ohne Trays)."""
    grow_plan = db.get(GrowPlan, grow_plan_id)
    if not grow_plan:
        raise HTTPException(status_code=404, detail="Wachstumsprofil nicht gefunden")

    tray_count = db.execute(
        select(func.count()).where(Tray.grow_plan_id == grow_plan_id)
    ).scalar()
    if tray_count > 0:
        raise HTTPException(
            status_code=400,
            detail=f"Kann nicht gelöscht werden: {tray_count} Trays vorhanden. Bitte stattdessen deaktivieren."
        )

    db.delete(grow_plan)
    db.commit()


@grow_plans_router.get("/{grow_plan_id}/yield-statistics", response_model=YieldStatisticsResponse)
async def get_yield_statistics(grow_plan_id: UUID, db: DBSession, today: Optional[date] = None):
    """Tatsächlicher Ertrag im Vergleich zum Profil (gewichtete Historie)."""
    grow_plan = db.get(GrowPlan, grow_plan_id)
    if not grow_plan:
        raise HTTPException(status_code=404, detail="Wachstumsprofil nicht gefunden")

    stats = HarvestYieldCalculator(db).yield_statistics(grow_plan, today)
    return YieldStatisticsResponse(grow_plan_id=grow_plan.id, **stats)


# ============== Mix Endpoints ==============

mixes_router = APIRouter(prefix="/mixes", tags=["Mischungen"])


@mixes_router.get("", response_model=list[ProductMixResponse])
async def list_mixes(db: DBSession, is_active: Optional[bool] = None):
    query = select(ProductMix)
    if is_active is not None:
        query = query.where(ProductMix.is_active == is_active)
    mixes = db.execute(query.order_by(ProductMix.name)).scalars().all()
    return [ProductMixResponse.model_validate(m) for m in mixes]


@mixes_router.get("/{mix_id}", response_model=ProductMixResponse)
async def get_mix(mix_id: UUID, db: DBSession):
    mix = db.get(ProductMix, mix_id)
    if not mix:
        raise HTTPException(status_code=404, detail="Mischung nicht gefunden")
    return ProductMixResponse.model_validate(mix)


@mixes_router.post("", response_model=ProductMixResponse, status_code=status.HTTP_201_CREATED)
async def create_mix(data: ProductMixCreate, db: DBSession):
    """
    Neue Mischung anlegen.

    Die Anteile der Sorten müssen zusammen 100% ergeben.
    """
    for component in data.components:
        if not db.get(Seed, component.seed_id):
            raise HTTPException(status_code=404, detail=f"Saatgut-Sorte {component.seed_id} nicht gefunden")

    mix = ProductMix(name=data.name, description=data.description)
    for component in data.components:
        mix.components.append(MixComponent(seed_id=component.seed_id, percentage=component.percentage))
    db.add(mix)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"Mischung {data.name} existiert bereits")
    db.refresh(mix)
    return ProductMixResponse.model_validate(mix)


@mixes_router.post("/{mix_id}/deactivate", response_model=ProductMixResponse)
async def deactivate_mix(mix_id: UUID, db: DBSession):
    mix = db.get(ProductMix, mix_id)
    if not mix:
        raise HTTPException(status_code=404, detail="Mischung nicht gefunden")
    mix.is_active = False
    db.commit()
    db.refresh(mix)
    return ProductMixResponse.model_validate(mix)
