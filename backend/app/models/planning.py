from typing import Any, Optional
"""
Planungs-Models: ProductionPlan und PlanContribution
"""
import uuid
from datetime import datetime, date, timedelta
from decimal import Decimal
from sqlalchemy import String, Integer, Numeric, Boolean, DateTime, Date, ForeignKey, Text, Index, text, Enum as SQLEnum
from sqlalchemy.types import Uuid, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship


from app.database import Base
from app.models.enums import PlanStatus


OPEN_PLAN_CONDITION = "status IN ('DRAFT', 'ACTIVE')"


class ProductionPlan(Base):
    """
    Produktionsplan - gebündelter Bedarf einer Sorte für ein Erntedatum.

    Mengen entsprechen immer der Summe der aktiven Beiträge. Pro Sorte und
    Erntedatum existiert höchstens ein offener Plan (DRAFT/ACTIVE), das
    erzwingt der partielle Unique-Index.
    """
    __tablename__ = "production_plans"
    __table_args__ = (
        Index(
            "uq_production_plans_open_seed_harvest",
            "seed_id",
            "harvest_date",
            unique=True,
            sqlite_where=text(OPEN_PLAN_CONDITION),
            postgresql_where=text(OPEN_PLAN_CONDITION),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    seed_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("seeds.id"), nullable=False, index=True
    )
    grow_plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("grow_plans.id"), nullable=False
    )
    # Erster Besteller (Primärbeitrag)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="SET NULL")
    )

    # ==================== TERMINE ====================
    harvest_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    plant_by_date: Mapped[date] = mapped_column(Date, nullable=False)
    seed_soak_date: Mapped[Optional[date]] = mapped_column(Date)

    # ==================== MENGEN ====================
    trays_needed: Mapped[int] = mapped_column(Integer, nullable=False)
    grams_needed: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # ==================== STATUS ====================
    status: Mapped[PlanStatus] = mapped_column(
        SQLEnum(PlanStatus), default=PlanStatus.DRAFT, nullable=False, index=True
    )
    approved_by: Mapped[Optional[str]] = mapped_column(String(200))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text)

    # Berechnungsgrundlage und Bündelungs-Historie
    calculation_details: Mapped[Optional[dict]] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # ==================== BEZIEHUNGEN ====================
    seed: Mapped["Seed"] = relationship("Seed")
    grow_plan: Mapped["GrowPlan"] = relationship("GrowPlan")
    contributions: Mapped[list["PlanContribution"]] = relationship(
        "PlanContribution",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="PlanContribution.created_at"
    )
    trays: Mapped[list["Tray"]] = relationship("Tray", back_populates="production_plan")

    @property
    def is_open(self) -> bool:
        return self.status in PlanStatus.open_states()

    @property
    def active_contributions(self) -> list["PlanContribution"]:
        return [c for c in self.contributions if c.is_active]

    @property
    def contributing_order_ids(self) -> list[uuid.UUID]:
        return [c.order_id for c in self.active_contributions]

    @property
    def aggregation_history(self) -> list[dict]:
        return list((self.calculation_details or {}).get("aggregation_history", []))

    def is_overdue(self, today: Optional[date] = None) -> bool:
        """Pflanztermin liegt in der Vergangenheit"""
        today = today or date.today()
        return self.is_open and self.plant_by_date < today

    def is_urgent(self, days: int = 2, today: Optional[date] = None) -> bool:
        """Pflanztermin liegt innerhalb der nächsten `days` Tage"""
        today = today or date.today()
        return self.is_open and today <= self.plant_by_date <= today + timedelta(days=days)

    def update_details(self, **values: Any) -> None:
        """Setzt Werte in calculation_details (neues Dict, damit SQLAlchemy die Änderung erkennt)"""
        details = dict(self.calculation_details or {})
        details.update(values)
        self.calculation_details = details

    def append_details_entry(self, key: str, entry: dict) -> None:
        """Hängt einen Eintrag an eine Liste in calculation_details an"""
        details = dict(self.calculation_details or {})
        details[key] = list(details.get(key, [])) + [entry]
        self.calculation_details = details

    def __repr__(self) -> str:
        return f"<ProductionPlan(seed={self.seed_id}, harvest={self.harvest_date}, status={self.status.value})>"


class PlanContribution(Base):
    """
    Beitrag einer Bestellung zu einem Produktionsplan.
    Entfernte Beiträge bleiben mit Zeitpunkt und Grund erhalten.
    """
    __tablename__ = "plan_contributions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("production_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )

    trays: Mapped[int] = mapped_column(Integer, nullable=False)
    grams: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    removed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    removal_reason: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    plan: Mapped["ProductionPlan"] = relationship("ProductionPlan", back_populates="contributions")
    order: Mapped["Order"] = relationship("Order")

    def __repr__(self) -> str:
        return f"<PlanContribution(plan={self.plan_id}, order={self.order_id}, trays={self.trays})>"


# Imports für Type Hints
from app.models.seed import Seed
from app.models.product import GrowPlan
from app.models.order import Order
from app.models.production import Tray
