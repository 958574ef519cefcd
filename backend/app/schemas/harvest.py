"""
Pydantic Schemas für Ernten
"""
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class HarvestLineInput(BaseModel):
    """Ernteposition für ein Tray"""
    tray_id: UUID = Field(..., description="ID des Trays")
    harvested_weight_grams: Decimal = Field(..., ge=0, description="Geerntetes Gewicht in Gramm")
    percentage_harvested: Decimal = Field(..., ge=0, le=100, description="Geernteter Anteil des Trays in Prozent")
    notes: str | None = None


class HarvestSubmission(BaseModel):
    """Ernte erfassen oder korrigieren"""
    seed_id: UUID = Field(..., description="Geerntete Sorte")
    harvest_date: date = Field(..., description="Erntedatum")
    user_name: str | None = Field(None, max_length=200)
    notes: str | None = None
    lines: list[HarvestLineInput] = Field(default_factory=list)


class HarvestLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tray_id: UUID
    harvested_weight_grams: Decimal
    percentage_harvested: Decimal
    notes: str | None = None

    # Tray-Info (optional expandiert)
    tray_number: str | None = None


class HarvestResponse(BaseModel):
    """Schema für Ernte-Antwort"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    seed_id: UUID
    harvest_date: date
    user_name: str | None = None
    notes: str | None = None
    total_weight_grams: Decimal
    tray_count: int
    average_weight_per_tray: Decimal
    lines: list[HarvestLineResponse] = []
    created_at: datetime
    updated_at: datetime

    seed_name: str | None = None


class HarvestListResponse(BaseModel):
    items: list[HarvestResponse]
    total: int
