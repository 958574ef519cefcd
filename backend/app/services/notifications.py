"""
Benachrichtigungen aus der Event-Outbox.

Liest nicht zugestellte DomainEvents, baut daraus E-Mails an die
Produktionsleitung und markiert sie als zugestellt. Fehlgeschlagene
Zustellungen werden mit Fehlertext bis MAX_ATTEMPTS erneut versucht.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.email import (
    PLAN_REVIEW_TEMPLATE, ORDER_INFEASIBLE_TEMPLATE, ORDER_MILESTONE_TEMPLATE,
)
from app.models.enums import DomainEventType
from app.models.events import DomainEvent
from app.models.order import Order
from app.models.planning import ProductionPlan

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5

MILESTONES = {
    DomainEventType.ALL_CROPS_READY: "alle Trays sind erntereif",
    DomainEventType.ORDER_HARVESTED: "alle Trays sind geerntet",
}

# send(email_to, subject, template, data) -> bool
Sender = Callable[[str, str, str, dict[str, Any]], bool]


def _order_data(order: Optional[Order]) -> dict[str, Any]:
    if order is None:
        return {"order_number": "-", "customer_name": "-", "delivery_date": "-"}
    return {
        "order_number": order.order_number,
        "customer_name": order.customer_name,
        "delivery_date": order.delivery_date.strftime("%d.%m.%Y"),
    }


def build_notification(db: Session, event: DomainEvent) -> Optional[tuple[str, str, dict[str, Any]]]:
    """Betreff, Template und Daten für ein Event, None wenn keine Nachricht nötig ist"""
    order = db.get(Order, event.order_id) if event.order_id else None
    data = _order_data(order)
    payload = event.payload or {}

    if event.event_type == DomainEventType.PLAN_REVIEW_REQUIRED:
        plans = []
        for plan_id in payload.get("plan_ids", []):
            plan = db.get(ProductionPlan, UUID(plan_id))
            if plan is not None:
                plans.append({
                    "variety": plan.seed.name if plan.seed else str(plan.seed_id),
                    "harvest_date": plan.harvest_date.strftime("%d.%m.%Y"),
                    "trays_needed": plan.trays_needed,
                })
        data.update(plans=plans, reason=payload.get("reason", ""))
        return f"Manuelle Prüfung erforderlich: {data['order_number']}", PLAN_REVIEW_TEMPLATE, data

    if event.event_type == DomainEventType.ORDER_INFEASIBLE:
        data.update(issues=payload.get("issues", []))
        return f"Bestellung nicht rechtzeitig produzierbar: {data['order_number']}", ORDER_INFEASIBLE_TEMPLATE, data

    if event.event_type in MILESTONES:
        data.update(milestone=MILESTONES[event.event_type])
        return f"Bestellung {data['order_number']}: {MILESTONES[event.event_type]}", ORDER_MILESTONE_TEMPLATE, data

    return None


def dispatch_pending_events(db: Session, send: Sender, now: Optional[datetime] = None, limit: int = 100) -> dict[str, int]:
    """Stellt offene Events zu, ohne Commit"""
    settings = get_settings()
    now = now or datetime.utcnow()
    events = db.execute(
        select(DomainEvent)
        .where(DomainEvent.dispatched_at.is_(None), DomainEvent.attempts < MAX_ATTEMPTS)
        .order_by(DomainEvent.occurred_at)
        .limit(limit)
    ).scalars().all()

    sent = skipped = failed = 0
    for event in events:
        event.attempts = (event.attempts or 0) + 1
        notification = build_notification(db, event)
        if notification is None:
            event.dispatched_at = now
            skipped += 1
            continue

        subject, template, data = notification
        if send(settings.production_manager_email, subject, template, data):
            event.dispatched_at = now
            event.last_error = None
            sent += 1
        else:
            event.last_error = "E-Mail-Versand fehlgeschlagen"
            failed += 1
            logger.warning(f"Event {event.id} ({event.event_type.value}): Zustellung fehlgeschlagen")

    db.flush()
    return {"sent": sent, "skipped": skipped, "failed": failed}
