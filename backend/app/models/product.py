"""
Katalog-Models: GrowPlan (Wachstumsprofil), ProductMix, MixComponent
"""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import String, Integer, Numeric, Boolean, DateTime, ForeignKey, Text
from sqlalchemy.types import Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship


from app.database import Base


class GrowPlan(Base):
    """
    Wachstumsprofil einer Microgreen-Sorte.

    Definiert Einweichzeit, Stufendauern, Puffer und Ertrag pro Tray.
    Für eine Sorte gilt das jüngste aktive Profil. Ein neues Profil löst das
    bisherige ab, laufende Trays behalten ihr Profil.
    """
    __tablename__ = "grow_plans"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    seed_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("seeds.id"), nullable=False, index=True
    )

    # Identifikation
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Phasen (Einweichen in Stunden, sonst Tage)
    seed_soak_hours: Mapped[int] = mapped_column(Integer, default=0)
    germination_days: Mapped[int] = mapped_column(Integer, nullable=False)
    blackout_days: Mapped[int] = mapped_column(Integer, default=0)  # 0 = keine Dunkelphase
    light_days: Mapped[int] = mapped_column(Integer, nullable=False)
    days_to_maturity: Mapped[Optional[int]] = mapped_column(Integer)

    # Ertrag
    buffer_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("10")
    )
    yield_grams_per_unit: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False
    )
    seed_density_grams_per_tray: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))

    # Notizen
    growing_notes: Mapped[Optional[str]] = mapped_column(Text)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    seed: Mapped["Seed"] = relationship("Seed", back_populates="grow_plans")

    @property
    def total_growing_days(self) -> int:
        """Keimung + Dunkelphase + Lichtphase"""
        return self.germination_days + self.blackout_days + self.light_days

    def __repr__(self) -> str:
        return f"<GrowPlan(code='{self.code}', name='{self.name}')>"


class ProductMix(Base):
    """
    Mischung mehrerer Sorten (z.B. "Salat-Mix").
    Bestellmengen werden über die Prozentanteile auf die Sorten verteilt.
    """
    __tablename__ = "product_mixes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    components: Mapped[list["MixComponent"]] = relationship(
        "MixComponent", back_populates="mix", cascade="all, delete-orphan"
    )

    @property
    def total_percentage(self) -> Decimal:
        return sum((c.percentage for c in self.components), Decimal("0"))

    def __repr__(self) -> str:
        return f"<ProductMix(name='{self.name}')>"


class MixComponent(Base):
    """Anteil einer Sorte an einer Mischung"""
    __tablename__ = "mix_components"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    mix_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("product_mixes.id", ondelete="CASCADE"), nullable=False
    )
    seed_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("seeds.id"), nullable=False
    )
    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    mix: Mapped["ProductMix"] = relationship("ProductMix", back_populates="components")
    seed: Mapped["Seed"] = relationship("Seed")


# Import für Type Hints
from app.models.seed import Seed
