"""
Pydantic Schemas für Wachstumsprofile (GrowPlans) und Mischungen
"""
from datetime import datetime
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, field_validator


# ============================================================
# GROW PLAN SCHEMAS
# ============================================================

class GrowPlanBase(BaseModel):
    """Basis-Schema für Wachstumsprofil"""
    code: str = Field(..., min_length=1, max_length=50, description="Profil-Kürzel")
    name: str = Field(..., min_length=1, max_length=100, description="Profil-Name")

    # Phasen
    seed_soak_hours: int = Field(default=0, ge=0, description="Einweichzeit in Stunden (0 = kein Einweichen)")
    germination_days: int = Field(..., ge=0, description="Keimzeit in Tagen")
    blackout_days: int = Field(default=0, ge=0, description="Dunkelphase in Tagen (0 = keine)")
    light_days: int = Field(..., ge=0, description="Lichtphase in Tagen")
    days_to_maturity: int | None = Field(None, ge=1, description="Gesamtdauer, falls keine Phasen gepflegt")

    # Ertrag
    buffer_percentage: Decimal = Field(default=Decimal("10"), ge=0, le=100, description="Sicherheitspuffer %")
    yield_grams_per_unit: Decimal = Field(..., gt=0, description="Erwarteter Ertrag g/Tray")
    seed_density_grams_per_tray: Decimal | None = Field(None, gt=0, description="Saatdichte g/Tray")

    growing_notes: str | None = Field(None, description="Anbauhinweise")


class GrowPlanCreate(GrowPlanBase):
    """Schema zum Erstellen eines Wachstumsprofils"""
    seed_id: UUID = Field(..., description="Sorte")


class GrowPlanUpdate(BaseModel):
    """Schema zum Aktualisieren eines Wachstumsprofils"""
    name: str | None = Field(None, min_length=1, max_length=100)
    seed_soak_hours: int | None = Field(None, ge=0)
    germination_days: int | None = Field(None, ge=0)
    blackout_days: int | None = Field(None, ge=0)
    light_days: int | None = Field(None, ge=0)
    days_to_maturity: int | None = Field(None, ge=1)
    buffer_percentage: Decimal | None = Field(None, ge=0, le=100)
    yield_grams_per_unit: Decimal | None = Field(None, gt=0)
    seed_density_grams_per_tray: Decimal | None = None
    growing_notes: str | None = None
    is_active: bool | None = None


class GrowPlanResponse(GrowPlanBase):
    """Schema für GrowPlan-Antwort"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    seed_id: UUID
    is_active: bool
    created_at: datetime
    updated_at: datetime

    # Berechnet
    total_growing_days: int


class GrowPlanListResponse(BaseModel):
    """Schema für GrowPlan-Liste"""
    items: list[GrowPlanResponse]
    total: int


class YieldStatisticsResponse(BaseModel):
    """Ertragskennzahlen aus historischen Ernten"""
    grow_plan_id: UUID
    harvest_count: int
    expected_yield: float
    average_yield: float | None
    weighted_yield: float | None
    std_deviation: float | None
    variance_percent: float | None


# ============================================================
# MIX SCHEMAS
# ============================================================

class MixComponentSchema(BaseModel):
    """Anteil einer Sorte an einer Mischung"""
    model_config = ConfigDict(from_attributes=True)

    seed_id: UUID
    percentage: Decimal = Field(..., gt=0, le=100, description="Anteil in Prozent")


class ProductMixCreate(BaseModel):
    """Schema zum Erstellen einer Mischung"""
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    components: list[MixComponentSchema] = Field(..., min_length=1)

    @field_validator('components')
    @classmethod
    def validate_percentages(cls, v):
        total = sum((c.percentage for c in v), Decimal("0"))
        if total != Decimal("100"):
            raise ValueError(f"Anteile müssen 100% ergeben (aktuell {total}%)")
        seed_ids = [c.seed_id for c in v]
        if len(set(seed_ids)) != len(seed_ids):
            raise ValueError("Jede Sorte darf nur einmal enthalten sein")
        return v


class ProductMixResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None
    is_active: bool
    created_at: datetime
    components: list[MixComponentSchema] = []
