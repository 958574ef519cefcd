from typing import Optional
"""
API Endpoints für Bestellungen.

Anlegen und Ändern einer Bestellung löst die Produktionsplanung aus,
eine Stornierung entfernt die Beiträge der Bestellung aus den Plänen.
"""
from datetime import date, datetime
from uuid import UUID
from fastapi import APIRouter, HTTPException, status, Query
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload

from app.api.deps import DBSession, Pagination, CurrentUser, raise_http
from app.api.v1.planning import planning_result_response
from app.core.exceptions import ProductionError
from app.models.enums import OrderStatus
from app.models.order import Order, OrderLine, OrderAuditLog
from app.models.product import ProductMix
from app.models.seed import Seed
from app.schemas.order import (
    OrderCreate, OrderUpdate, OrderCancel, OrderLineCreate,
    OrderResponse, OrderPlanningResponse, OrderAuditLogResponse, OrderListResponse,
)
from app.services.order_status import change_order_status
from app.services.planning import PlanningService

router = APIRouter()


# ============== Hilfsfunktionen ==============

def _generate_order_number(db: DBSession) -> str:
    """Generiert sequenzielle Bestellnummer im Format BE-YYYYMMDD-NNNN."""
    today = date.today()
    prefix = f"BE-{today.strftime('%Y%m%d')}"

    last_number = db.execute(
        select(Order.order_number)
        .where(Order.order_number.like(f"{prefix}-%"))
        .order_by(Order.order_number.desc())
        .limit(1)
    ).scalar_one_or_none()

    next_num = int(last_number.split('-')[-1]) + 1 if last_number else 1
    return f"{prefix}-{next_num:04d}"


def _create_audit_log(
    db: DBSession,
    order: Order,
    user_name: Optional[str],
    action: str,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    reason: Optional[str] = None
) -> OrderAuditLog:
    """Erstellt Audit-Log-Eintrag für Bestellung."""
    audit_log = OrderAuditLog(
        order_id=order.id,
        action=action,
        old_values=old_values,
        new_values=new_values,
        user_name=user_name,
        reason=reason
    )
    db.add(audit_log)
    return audit_log


def _build_lines(db: DBSession, lines: list[OrderLineCreate]) -> list[OrderLine]:
    """Positionen anlegen, Sorten und Mischungen müssen existieren"""
    result = []
    for idx, line_data in enumerate(lines, start=1):
        if line_data.seed_id and not db.get(Seed, line_data.seed_id):
            raise HTTPException(status_code=404, detail=f"Saatgut-Sorte {line_data.seed_id} nicht gefunden")
        if line_data.mix_id:
            mix = db.get(ProductMix, line_data.mix_id)
            if not mix or not mix.is_active:
                raise HTTPException(status_code=404, detail=f"Mischung {line_data.mix_id} nicht gefunden")
        result.append(OrderLine(
            position=idx,
            seed_id=line_data.seed_id,
            mix_id=line_data.mix_id,
            quantity=line_data.quantity,
            unit=line_data.unit,
            harvest_date=line_data.harvest_date,
        ))
    return result


def _lines_snapshot(order: Order) -> list[dict]:
    return [
        {
            "seed_id": str(line.seed_id) if line.seed_id else None,
            "mix_id": str(line.mix_id) if line.mix_id else None,
            "quantity": str(line.quantity),
            "unit": line.unit.value,
            "harvest_date": line.harvest_date.isoformat() if line.harvest_date else None,
        }
        for line in order.lines
    ]


def _get_order(db: DBSession, order_id: UUID) -> Order:
    order = db.execute(
        select(Order)
        .options(selectinload(Order.lines))
        .where(Order.id == order_id)
    ).scalar_one_or_none()
    if not order:
        raise HTTPException(status_code=404, detail="Bestellung nicht gefunden")
    return order


# ============== Order Endpoints ==============

@router.get("/orders", response_model=OrderListResponse)
async def list_orders(
    db: DBSession,
    pagination: Pagination,
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    delivery_from: Optional[date] = None,
    delivery_to: Optional[date] = None,
):
    """
    Liste der Bestellungen, nach Lieferdatum sortiert.

    Filter:
    - **status**: Bestellstatus
    - **delivery_from / delivery_to**: Zeitraum des Lieferdatums
    """
    query = select(Order).options(selectinload(Order.lines))
    if status_filter:
        query = query.where(Order.status == status_filter)
    if delivery_from:
        query = query.where(Order.delivery_date >= delivery_from)
    if delivery_to:
        query = query.where(Order.delivery_date <= delivery_to)

    total = db.execute(select(func.count()).select_from(query.subquery())).scalar() or 0

    query = query.order_by(Order.delivery_date, Order.order_number)
    orders = db.execute(query.offset(pagination.offset).limit(pagination.page_size)).scalars().all()

    return OrderListResponse(items=[OrderResponse.model_validate(o) for o in orders], total=total)


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(order_id: UUID, db: DBSession):
    return OrderResponse.model_validate(_get_order(db, order_id))


@router.post("/orders", response_model=OrderPlanningResponse, status_code=status.HTTP_201_CREATED)
async def create_order(order_data: OrderCreate, db: DBSession, user: CurrentUser):
    """
    Neue Bestellung anlegen und Produktion planen.

    Nicht planbare Sorten werden im Ergebnis als Problem gemeldet, die
    Bestellung wird trotzdem angelegt.
    """
    order = Order(
        order_number=_generate_order_number(db),
        customer_name=order_data.customer_name,
        delivery_date=order_data.delivery_date,
        notes=order_data.notes,
        status=OrderStatus.ENTWURF,
    )
    order.lines = _build_lines(db, order_data.lines)
    db.add(order)
    db.flush()

    _create_audit_log(
        db, order,
        user_name=user.get("username"),
        action="CREATE",
        new_values={"delivery_date": order.delivery_date.isoformat(), "lines": _lines_snapshot(order)},
    )

    try:
        result = PlanningService(db).generate_plans_for_order(order)
    except ProductionError as e:
        raise_http(db, e)

    db.commit()
    return OrderPlanningResponse(
        order=OrderResponse.model_validate(_get_order(db, order.id)),
        planning=planning_result_response(result),
    )


@router.patch("/orders/{order_id}", response_model=OrderPlanningResponse)
async def update_order(
    order_id: UUID,
    order_data: OrderUpdate,
    db: DBSession,
    user: CurrentUser
):
    """
    Bestellung aktualisieren und Pläne neu berechnen.

    Existieren für betroffene Pläne bereits Trays, bleiben die Pläne
    unverändert und eine manuelle Prüfung wird angefordert.
    """
    order = _get_order(db, order_id)
    if order.status.is_final:
        raise HTTPException(status_code=400, detail="Abgeschlossene oder stornierte Bestellung kann nicht bearbeitet werden")

    old_values = {}
    new_values = {}

    update_data = order_data.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        if field == "lines":
            continue
        old_value = getattr(order, field, None)
        if old_value != value:
            old_values[field] = str(old_value) if old_value is not None else None
            new_values[field] = str(value) if value is not None else None
            setattr(order, field, value)

    if order_data.lines is not None:
        old_values["lines"] = _lines_snapshot(order)
        order.lines.clear()
        db.flush()
        order.lines.extend(_build_lines(db, order_data.lines))
        new_values["lines"] = _lines_snapshot(order)

    order.updated_at = datetime.utcnow()
    db.flush()

    if old_values:
        _create_audit_log(
            db, order,
            user_name=user.get("username"),
            action="UPDATE",
            old_values=old_values,
            new_values=new_values,
        )

    try:
        result = PlanningService(db).update_plans_for_order(order)
    except ProductionError as e:
        raise_http(db, e)

    db.commit()
    return OrderPlanningResponse(
        order=OrderResponse.model_validate(_get_order(db, order.id)),
        planning=planning_result_response(result),
    )


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(order_id: UUID, data: OrderCancel, db: DBSession, user: CurrentUser):
    """
    Bestellung stornieren.

    Die Beiträge der Bestellung werden aus allen offenen Plänen entfernt,
    Pläne ohne weitere Beiträge werden storniert.
    """
    order = _get_order(db, order_id)
    if not order.can_be_cancelled():
        raise HTTPException(status_code=400, detail=f"Bestellung im Status {order.status.value} kann nicht storniert werden")

    reason = data.reason or f"Bestellung {order.order_number} storniert"
    try:
        PlanningService(db).cancel_order(order, reason)
    except ProductionError as e:
        raise_http(db, e)

    change_order_status(db, order, OrderStatus.STORNIERT, reason, user_name=user.get("username"))
    db.commit()
    return OrderResponse.model_validate(_get_order(db, order.id))


@router.get("/orders/{order_id}/audit-log", response_model=list[OrderAuditLogResponse])
async def get_order_audit_log(order_id: UUID, db: DBSession):
    """Audit-Log einer Bestellung (neueste zuerst)."""
    order = _get_order(db, order_id)
    return [OrderAuditLogResponse.model_validate(entry) for entry in order.audit_logs]
