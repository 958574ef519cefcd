from typing import Optional
"""
Outbox für Domain Events der Produktion
"""
import uuid
from datetime import datetime
from sqlalchemy import Integer, DateTime, ForeignKey, Text, Enum as SQLEnum
from sqlalchemy.types import Uuid, JSON
from sqlalchemy.orm import Mapped, mapped_column


from app.database import Base
from app.models.enums import DomainEventType


class DomainEvent(Base):
    """
    Gespeichertes Domain Event.

    Wird in derselben Transaktion wie die auslösende Änderung geschrieben.
    Nachgelagerte Benachrichtigungen verarbeitet der Celery-Task
    `dispatch_domain_events` und setzt danach `dispatched_at`.
    """
    __tablename__ = "domain_events"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    event_type: Mapped[DomainEventType] = mapped_column(
        SQLEnum(DomainEventType), nullable=False, index=True
    )
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), index=True
    )
    tray_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("trays.id", ondelete="SET NULL")
    )
    payload: Mapped[Optional[dict]] = mapped_column(JSON)

    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<DomainEvent(type={self.event_type.value}, order={self.order_id})>"
