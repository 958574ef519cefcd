"""
Wachstumsdauern einer Sorte.

DurationProfile ist eine unveränderliche Sicht auf den aktiven GrowPlan
einer Sorte und wird von Planung und Lifecycle gemeinsam genutzt.
"""
import math
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError
from app.models.enums import CropStage
from app.models.product import GrowPlan


@dataclass(frozen=True)
class DurationProfile:
    """Wachstumsparameter einer Sorte"""
    grow_plan_id: UUID
    seed_id: UUID
    seed_soak_hours: int
    germination_days: int
    blackout_days: int
    light_days: int
    days_to_maturity: Optional[int]
    buffer_percentage: Decimal
    yield_grams_per_unit: Decimal

    @classmethod
    def from_grow_plan(cls, grow_plan: GrowPlan, default_buffer: Decimal = Decimal("0")) -> "DurationProfile":
        buffer = grow_plan.buffer_percentage
        return cls(
            grow_plan_id=grow_plan.id,
            seed_id=grow_plan.seed_id,
            seed_soak_hours=grow_plan.seed_soak_hours or 0,
            germination_days=grow_plan.germination_days or 0,
            blackout_days=grow_plan.blackout_days or 0,
            light_days=grow_plan.light_days or 0,
            days_to_maturity=grow_plan.days_to_maturity,
            buffer_percentage=Decimal(buffer) if buffer is not None else default_buffer,
            yield_grams_per_unit=Decimal(grow_plan.yield_grams_per_unit or 0),
        )

    @property
    def stage_days(self) -> int:
        return self.germination_days + self.blackout_days + self.light_days

    @property
    def total_growing_days(self) -> int:
        """
        Tage von Aussaat bis Ernte.
        days_to_maturity gilt nur, wenn keine Stufendauern gepflegt sind.
        """
        if self.stage_days == 0 and self.days_to_maturity:
            return self.days_to_maturity
        return self.stage_days

    @property
    def has_soaking(self) -> bool:
        return self.seed_soak_hours > 0

    @property
    def has_blackout(self) -> bool:
        return self.blackout_days > 0

    @property
    def soak_days(self) -> int:
        """Angefangene Einweichtage (8h -> 1 Tag, 30h -> 2 Tage)"""
        if not self.has_soaking:
            return 0
        return math.ceil(self.seed_soak_hours / 24)

    @property
    def initial_stage(self) -> CropStage:
        return CropStage.SOAKING if self.has_soaking else CropStage.GERMINATION

    def stage_duration(self, stage: CropStage) -> timedelta:
        """Konfigurierte Dauer einer Stufe"""
        if stage == CropStage.SOAKING:
            return timedelta(hours=self.seed_soak_hours)
        if stage == CropStage.GERMINATION:
            return timedelta(days=self.germination_days)
        if stage == CropStage.BLACKOUT:
            return timedelta(days=self.blackout_days)
        if stage == CropStage.LIGHT:
            # Nur Gesamtdauer gepflegt: die ganze Wachstumszeit zählt als Lichtphase
            if self.stage_days == 0 and self.days_to_maturity:
                return timedelta(days=self.days_to_maturity)
            return timedelta(days=self.light_days)
        return timedelta(0)

    def is_skipped(self, stage: CropStage) -> bool:
        if stage == CropStage.SOAKING:
            return not self.has_soaking
        if stage == CropStage.BLACKOUT:
            return not self.has_blackout
        return False


def get_active_grow_plan(db: Session, seed_id: UUID) -> Optional[GrowPlan]:
    """Jüngstes aktives Wachstumsprofil einer Sorte"""
    return db.execute(
        select(GrowPlan)
        .where(GrowPlan.seed_id == seed_id, GrowPlan.is_active == True)
        .order_by(GrowPlan.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def get_active_profile(db: Session, seed_id: UUID) -> DurationProfile:
    grow_plan = get_active_grow_plan(db, seed_id)
    if not grow_plan:
        raise NotFoundError("Wachstumsprofil nicht gefunden")
    return DurationProfile.from_grow_plan(grow_plan)
