from typing import Optional
"""
Produktions-Models: GrowBatch, Tray, StageTransitionLog, Harvest und HarvestLine
"""
import uuid
from datetime import datetime, date
from decimal import Decimal
from sqlalchemy import String, Integer, Numeric, DateTime, Date, ForeignKey, Text, Index, text, Enum as SQLEnum
from sqlalchemy.types import Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship


from app.database import Base
from app.models.enums import CropStage, StageAction, STAGE_ORDER, STAGE_TIMESTAMP_FIELDS


LIVE_TRAY_CONDITION = "current_stage NOT IN ('HARVESTED', 'CANCELLED')"


class GrowBatch(Base):
    """
    Wachstumscharge - mehrere Trays, die gemeinsam die Stufen durchlaufen.
    Anzahl, Tray-Nummern und Stufe werden aus den Trays abgeleitet.
    """
    __tablename__ = "grow_batches"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    grow_plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("grow_plans.id"), nullable=False
    )
    production_plan_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("production_plans.id", ondelete="SET NULL")
    )
    regal_position: Mapped[Optional[str]] = mapped_column(String(50))
    notizen: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Beziehungen
    grow_plan: Mapped["GrowPlan"] = relationship("GrowPlan")
    trays: Mapped[list["Tray"]] = relationship(
        "Tray", back_populates="batch", order_by="Tray.tray_number"
    )

    @property
    def crop_count(self) -> int:
        return len(self.trays)

    @property
    def tray_numbers(self) -> list[str]:
        return [t.tray_number for t in self.trays]

    @property
    def stage(self) -> Optional[CropStage]:
        """Früheste Stufe aller lebenden Trays, sonst die Stufe des ersten Trays"""
        live = [t.current_stage for t in self.trays if not t.current_stage.is_terminal]
        if live:
            return min(live, key=STAGE_ORDER.index)
        return self.trays[0].current_stage if self.trays else None

    def __repr__(self) -> str:
        return f"<GrowBatch(id={self.id}, trays={self.crop_count})>"


class Tray(Base):
    """
    Tray (Growing Unit) - physische Anbaueinheit.

    Jede Stufe hat einen Eintrittszeitpunkt. Die Zeitpunkte sind in
    Stufenreihenfolge nicht fallend; beim Zurücksetzen werden spätere
    Zeitpunkte gelöscht. Alter, Restzeit und erwartete Ernte werden beim
    Lesen berechnet (app.services.crop_timing) und nicht gespeichert.
    """
    __tablename__ = "trays"
    __table_args__ = (
        Index(
            "uq_trays_live_tray_number",
            "tray_number",
            unique=True,
            sqlite_where=text(LIVE_TRAY_CONDITION),
            postgresql_where=text(LIVE_TRAY_CONDITION),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    tray_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Rezept und Herkunft
    grow_plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("grow_plans.id"), nullable=False
    )
    batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("grow_batches.id", ondelete="SET NULL"), index=True
    )
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="SET NULL"), index=True
    )
    production_plan_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("production_plans.id", ondelete="SET NULL"), index=True
    )

    # ==================== STUFE ====================
    current_stage: Mapped[CropStage] = mapped_column(
        SQLEnum(CropStage), nullable=False, index=True
    )
    soaking_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    germination_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    blackout_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    light_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    harvested_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Manuell als erntereif markiert
    ready_flagged_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    watering_suspended_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Beziehungen
    grow_plan: Mapped["GrowPlan"] = relationship("GrowPlan")
    batch: Mapped[Optional["GrowBatch"]] = relationship("GrowBatch", back_populates="trays")
    order: Mapped[Optional["Order"]] = relationship("Order")
    production_plan: Mapped[Optional["ProductionPlan"]] = relationship(
        "ProductionPlan", back_populates="trays"
    )
    stage_logs: Mapped[list["StageTransitionLog"]] = relationship(
        "StageTransitionLog",
        back_populates="tray",
        cascade="all, delete-orphan",
        order_by="StageTransitionLog.created_at"
    )

    @property
    def is_watering_suspended(self) -> bool:
        return self.watering_suspended_at is not None

    def stage_timestamp(self, stage: CropStage) -> Optional[datetime]:
        field = STAGE_TIMESTAMP_FIELDS.get(stage)
        return getattr(self, field) if field else None

    def set_stage_timestamp(self, stage: CropStage, value: Optional[datetime]) -> None:
        setattr(self, STAGE_TIMESTAMP_FIELDS[stage], value)

    @property
    def recorded_stage_timestamps(self) -> list[tuple[CropStage, datetime]]:
        """Alle gesetzten Stufen-Zeitpunkte in Stufenreihenfolge"""
        return [
            (stage, self.stage_timestamp(stage))
            for stage in STAGE_ORDER
            if self.stage_timestamp(stage) is not None
        ]

    def __repr__(self) -> str:
        return f"<Tray(number='{self.tray_number}', stage={self.current_stage.value})>"


class StageTransitionLog(Base):
    """Protokoll der Stufenwechsel und Teilernten eines Trays"""
    __tablename__ = "stage_transition_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    tray_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("trays.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action: Mapped[StageAction] = mapped_column(SQLEnum(StageAction), nullable=False)
    from_stage: Mapped[Optional[CropStage]] = mapped_column(SQLEnum(CropStage))
    to_stage: Mapped[Optional[CropStage]] = mapped_column(SQLEnum(CropStage))
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    user_name: Mapped[Optional[str]] = mapped_column(String(200))
    reason: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    tray: Mapped["Tray"] = relationship("Tray", back_populates="stage_logs")

    def __repr__(self) -> str:
        return f"<StageTransitionLog(tray={self.tray_id}, action={self.action.value})>"


class Harvest(Base):
    """
    Ernte - dokumentiert die geernteten Mengen einer Sorte.
    Summe, Anzahl und Durchschnitt werden aus den Positionen berechnet.
    """
    __tablename__ = "harvests"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    seed_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("seeds.id"), nullable=False, index=True
    )

    # Erntedaten
    harvest_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    user_name: Mapped[Optional[str]] = mapped_column(String(200))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Abgeleitete Summen
    total_weight_grams: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0"), nullable=False
    )
    tray_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_weight_per_tray: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0"), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Beziehungen
    seed: Mapped["Seed"] = relationship("Seed")
    lines: Mapped[list["HarvestLine"]] = relationship(
        "HarvestLine", back_populates="harvest", cascade="all, delete-orphan"
    )

    def recalculate_totals(self) -> None:
        """Summe, Anzahl und Durchschnitt aus den Positionen neu berechnen"""
        total = sum((line.harvested_weight_grams for line in self.lines), Decimal("0"))
        count = len(self.lines)
        self.total_weight_grams = total
        self.tray_count = count
        self.average_weight_per_tray = (total / count) if count else Decimal("0")

    def __repr__(self) -> str:
        return f"<Harvest(id={self.id}, total={self.total_weight_grams}g)>"


class HarvestLine(Base):
    """Ernteposition - ein Tray innerhalb einer Ernte"""
    __tablename__ = "harvest_lines"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    harvest_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("harvests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tray_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("trays.id"), nullable=False, index=True
    )

    harvested_weight_grams: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    percentage_harvested: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Stufe vor der Ernte, für Korrekturen
    stage_before: Mapped[Optional[CropStage]] = mapped_column(SQLEnum(CropStage))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    harvest: Mapped["Harvest"] = relationship("Harvest", back_populates="lines")
    tray: Mapped["Tray"] = relationship("Tray")

    @property
    def is_complete(self) -> bool:
        return self.percentage_harvested >= 100

    @property
    def tray_number(self) -> Optional[str]:
        return self.tray.tray_number if self.tray else None

    def __repr__(self) -> str:
        return f"<HarvestLine(tray={self.tray_id}, {self.percentage_harvested}%)>"


# Imports für Type Hints
from app.models.seed import Seed
from app.models.product import GrowPlan
from app.models.order import Order
from app.models.planning import ProductionPlan
