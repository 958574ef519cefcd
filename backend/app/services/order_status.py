"""
Order-Status-Propagation.

Konsumiert die Produktions-Events und schreibt Bestellstatus und
Audit-Log. Der Lifecycle selbst ändert nie direkt den Bestellstatus.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.core.events import EventBus, ProductionEvent, CropPlanted, AllCropsReady, OrderHarvested
from app.models.enums import OrderStatus
from app.models.order import Order, OrderAuditLog

logger = logging.getLogger(__name__)

# Zielstatus je Event und erlaubte Ausgangsstatus
STATUS_TRANSITIONS: dict[type, tuple[OrderStatus, tuple[OrderStatus, ...]]] = {
    CropPlanted: (
        OrderStatus.IN_PRODUKTION,
        (OrderStatus.ENTWURF, OrderStatus.BESTAETIGT),
    ),
    AllCropsReady: (
        OrderStatus.ERNTEREIF,
        (OrderStatus.ENTWURF, OrderStatus.BESTAETIGT, OrderStatus.IN_PRODUKTION),
    ),
    OrderHarvested: (
        OrderStatus.GEERNTET,
        (OrderStatus.ENTWURF, OrderStatus.BESTAETIGT, OrderStatus.IN_PRODUKTION, OrderStatus.ERNTEREIF),
    ),
}


def change_order_status(
    db: Session,
    order: Order,
    new_status: OrderStatus,
    reason: str,
    user_name: Optional[str] = None,
) -> None:
    """Setzt den Status und protokolliert die Änderung"""
    old_status = order.status
    order.status = new_status
    db.add(OrderAuditLog(
        order_id=order.id,
        action="STATUS_CHANGE",
        field_name="status",
        old_values={"status": old_status.value},
        new_values={"status": new_status.value},
        user_name=user_name or "system",
        reason=reason,
    ))
    logger.info(f"Bestellung {order.order_number}: {old_status.value} -> {new_status.value}")


def handle_production_event(db: Session, event: ProductionEvent) -> None:
    if event.order_id is None:
        return
    order = db.get(Order, event.order_id)
    if not order:
        logger.warning(f"Event {event.event_type.value}: Bestellung {event.order_id} nicht gefunden")
        return

    new_status, allowed = STATUS_TRANSITIONS[type(event)]
    if order.status not in allowed:
        logger.info(
            f"Bestellung {order.order_number} bleibt {order.status.value} "
            f"(Event {event.event_type.value})"
        )
        return

    change_order_status(db, order, new_status, reason=f"Produktion: {event.event_type.value}")


def register_order_status_handlers(bus: EventBus) -> None:
    for event_cls in STATUS_TRANSITIONS:
        bus.subscribe(event_cls, handle_production_event)
