from typing import Optional
"""
Bestell-Models: Order (Header), OrderLine (Positionen) und OrderAuditLog.
Die Produktionsplanung liest Lieferdatum und Positionen und schreibt
Statusänderungen nur über die Order-Status-Handler.
"""
import uuid
from datetime import datetime, date
from decimal import Decimal
from sqlalchemy import String, Integer, Numeric, DateTime, Date, ForeignKey, Text, Enum as SQLEnum
from sqlalchemy.types import Uuid, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship


from app.database import Base


from app.models.enums import OrderStatus, OrderLineUnit


class Order(Base):
    """
    Bestellung (Header) - Kundenauftrag mit Lieferdatum.

    Geschäftsregeln:
    - Eine Bestellung benötigt mindestens eine Position
    - Statusänderungen werden auditiert
    - Löschen einer Bestellung löscht alle Positionen (Cascade)
    """
    __tablename__ = "orders"

    # ==================== IDENTIFIKATION ====================
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )

    # Human-readable Bestellnummer (z.B. "ORD-2026-00001")
    order_number: Mapped[str] = mapped_column(
        String(20), unique=True, index=True, nullable=False
    )
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)

    # ==================== DATUM ====================
    order_date: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    delivery_date: Mapped[date] = mapped_column(
        Date, nullable=False, index=True
    )

    # ==================== STATUS ====================
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus), default=OrderStatus.ENTWURF, index=True
    )

    # ==================== NOTIZEN ====================
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # ==================== AUDIT FIELDS ====================
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # ==================== BEZIEHUNGEN ====================
    lines: Mapped[list["OrderLine"]] = relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.position"
    )
    audit_logs: Mapped[list["OrderAuditLog"]] = relationship(
        "OrderAuditLog",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderAuditLog.created_at.desc()"
    )

    def can_be_modified(self) -> bool:
        """Prüft ob Bestellung noch bearbeitet werden kann"""
        return self.status in (OrderStatus.ENTWURF, OrderStatus.BESTAETIGT)

    def can_be_cancelled(self) -> bool:
        """Prüft ob Bestellung storniert werden kann"""
        return not self.status.is_final

    def __repr__(self) -> str:
        return f"<Order(number='{self.order_number}', status={self.status.value})>"


class OrderLine(Base):
    """
    Bestellposition - eine Sorte oder eine Mischung.

    Einheit G: Schnittware in Gramm.
    Einheit TRAY: lebende Trays, die Grammzahl ergibt sich aus dem Ertrag.
    """
    __tablename__ = "order_lines"

    # ==================== IDENTIFIKATION ====================
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    # ==================== PRODUKTREFERENZ ====================
    seed_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("seeds.id", ondelete="SET NULL")
    )
    mix_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("product_mixes.id", ondelete="SET NULL")
    )

    # ==================== MENGE & EINHEIT ====================
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    unit: Mapped[OrderLineUnit] = mapped_column(
        SQLEnum(OrderLineUnit), default=OrderLineUnit.G, nullable=False
    )

    # Abweichendes Erntedatum auf Positionsebene
    harvest_date: Mapped[Optional[date]] = mapped_column(Date)

    # ==================== AUDIT ====================
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # ==================== BEZIEHUNGEN ====================
    order: Mapped["Order"] = relationship("Order", back_populates="lines")
    seed: Mapped[Optional["Seed"]] = relationship("Seed")
    mix: Mapped[Optional["ProductMix"]] = relationship("ProductMix")

    def __repr__(self) -> str:
        return f"<OrderLine(pos={self.position}, qty={self.quantity} {self.unit.value})>"


class OrderAuditLog(Base):
    """
    Audit-Log für Bestellungsänderungen.
    Erfasst Statuswechsel aus der Produktion und Änderungen an Positionen.
    """
    __tablename__ = "order_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )

    # Was wurde geändert: CREATE, UPDATE, STATUS_CHANGE, CANCEL, PLANNING
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    field_name: Mapped[Optional[str]] = mapped_column(String(100))

    # Werte
    old_values: Mapped[Optional[dict]] = mapped_column(JSON)
    new_values: Mapped[Optional[dict]] = mapped_column(JSON)

    # Wer hat geändert
    user_name: Mapped[Optional[str]] = mapped_column(String(200))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Grund/Kommentar
    reason: Mapped[Optional[str]] = mapped_column(Text)

    order: Mapped["Order"] = relationship("Order", back_populates="audit_logs")

    def __repr__(self) -> str:
        return f"<OrderAuditLog(order={self.order_id}, action='{self.action}')>"


# Imports für Type Hints (am Ende um zirkuläre Imports zu vermeiden)
from app.models.seed import Seed
from app.models.product import ProductMix
