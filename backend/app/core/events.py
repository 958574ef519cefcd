"""
Domain Events der Produktion und synchroner Event-Bus.

Events werden explizit aus den Services veröffentlicht. `publish` schreibt
einen Outbox-Eintrag in die laufende Transaktion und ruft danach die
synchronen Handler auf. Fehler in Handlern werden nicht abgefangen, die
auslösende Änderung wird dann mit zurückgerollt.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, ClassVar, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.enums import DomainEventType
from app.models.events import DomainEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductionEvent:
    event_type: ClassVar[DomainEventType]
    order_id: Optional[UUID]

    @property
    def tray_id(self) -> Optional[UUID]:
        return None

    def payload(self) -> dict[str, Any]:
        return {"order_id": str(self.order_id) if self.order_id else None}


@dataclass(frozen=True)
class CropPlanted(ProductionEvent):
    """Ein Tray einer Bestellung ist in die Keimung gegangen"""
    event_type: ClassVar[DomainEventType] = DomainEventType.CROP_PLANTED
    planted_tray_id: Optional[UUID] = None

    @property
    def tray_id(self) -> Optional[UUID]:
        return self.planted_tray_id

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "tray_id": str(self.planted_tray_id)}


@dataclass(frozen=True)
class AllCropsReady(ProductionEvent):
    """Alle Trays einer Bestellung sind gleichzeitig erntereif"""
    event_type: ClassVar[DomainEventType] = DomainEventType.ALL_CROPS_READY


@dataclass(frozen=True)
class OrderHarvested(ProductionEvent):
    """Das letzte Tray einer Bestellung wurde geerntet"""
    event_type: ClassVar[DomainEventType] = DomainEventType.ORDER_HARVESTED


@dataclass(frozen=True)
class PlanReviewRequired(ProductionEvent):
    """Mengenänderung an einem Plan mit bereits angelegten Trays"""
    event_type: ClassVar[DomainEventType] = DomainEventType.PLAN_REVIEW_REQUIRED
    plan_ids: tuple[UUID, ...] = ()
    reason: str = ""

    def payload(self) -> dict[str, Any]:
        return {
            **super().payload(),
            "plan_ids": [str(p) for p in self.plan_ids],
            "reason": self.reason,
        }


@dataclass(frozen=True)
class OrderInfeasible(ProductionEvent):
    """Bestellung kann (teilweise) nicht rechtzeitig produziert werden"""
    event_type: ClassVar[DomainEventType] = DomainEventType.ORDER_INFEASIBLE
    issues: tuple[dict, ...] = field(default_factory=tuple)

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "issues": list(self.issues)}


EventHandler = Callable[[Session, ProductionEvent], None]


class EventBus:
    """Verteilt Events an registrierte Handler"""

    def __init__(self):
        self._handlers: dict[type, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_cls: type, handler: EventHandler) -> None:
        if handler not in self._handlers[event_cls]:
            self._handlers[event_cls].append(handler)

    def unsubscribe(self, event_cls: type, handler: EventHandler) -> None:
        if handler in self._handlers[event_cls]:
            self._handlers[event_cls].remove(handler)

    def publish(
        self,
        db: Session,
        event: ProductionEvent,
        occurred_at: Optional[datetime] = None,
    ) -> DomainEvent:
        record = DomainEvent(
            event_type=event.event_type,
            order_id=event.order_id,
            tray_id=event.tray_id,
            payload=event.payload(),
            occurred_at=occurred_at or datetime.utcnow(),
        )
        db.add(record)
        db.flush()
        logger.info(f"Event {event.event_type.value} für Bestellung {event.order_id}")

        for handler in list(self._handlers[type(event)]):
            handler(db, event)
        return record


# Singleton
event_bus = EventBus()
