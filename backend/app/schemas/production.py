"""
Pydantic Schemas für Produktion (Chargen und Trays)
"""
from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict

from app.models.enums import CropStage, StageAction


class GrowBatchCreate(BaseModel):
    """Charge ohne Produktionsplan anlegen (z.B. Lagerware)"""
    grow_plan_id: UUID = Field(..., description="Wachstumsprofil")
    tray_numbers: list[str] = Field(..., min_length=1, description="Tray-Nummern")
    started_at: datetime | None = Field(None, description="Start (Einweichen bzw. Aussaat)")
    order_id: UUID | None = Field(None, description="Bestellung für alle Trays")
    regal_position: str | None = Field(None, max_length=50, description="Position im Regal")
    notizen: str | None = Field(None, description="Zusätzliche Notizen")


class StageLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    action: StageAction
    from_stage: CropStage | None
    to_stage: CropStage | None
    occurred_at: datetime
    user_name: str | None
    reason: str | None


class TrayResponse(BaseModel):
    """Schema für Tray-Antwort mit berechneten Zeiten"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tray_number: str
    grow_plan_id: UUID
    batch_id: UUID | None
    order_id: UUID | None
    production_plan_id: UUID | None

    current_stage: CropStage
    soaking_at: datetime | None
    germination_at: datetime | None
    blackout_at: datetime | None
    light_at: datetime | None
    harvested_at: datetime | None
    cancelled_at: datetime | None
    ready_flagged_at: datetime | None
    watering_suspended_at: datetime | None
    notes: str | None

    # Berechnete Felder (nie gespeichert)
    stage_age_seconds: float | None = None
    time_to_next_stage_seconds: float | None = None
    total_age_seconds: float | None = None
    stage_age_display: str | None = None
    time_to_next_stage_display: str | None = None
    total_age_display: str | None = None
    ready_to_advance: bool = False
    ready_to_harvest: bool = False
    expected_harvest_at: datetime | None = None

    stage_logs: list[StageLogResponse] = []


class TrayListResponse(BaseModel):
    items: list[TrayResponse]
    total: int


class GrowBatchResponse(BaseModel):
    """Schema für Wachstumscharge-Antwort"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    grow_plan_id: UUID
    production_plan_id: UUID | None
    regal_position: str | None
    notizen: str | None
    created_at: datetime

    # Abgeleitet aus den Trays
    crop_count: int
    tray_numbers: list[str]
    stage: CropStage | None
    trays: list[TrayResponse] = []


class StageTimestampRequest(BaseModel):
    at: datetime | None = Field(None, description="Zeitpunkt des Stufenwechsels, Standard: jetzt")


class BulkTrayRequest(BaseModel):
    tray_ids: list[UUID] = Field(..., min_length=1)
    at: datetime | None = None


class AdvanceResponse(BaseModel):
    tray_id: UUID
    new_stage: CropStage


class BulkAdvanceResponse(BaseModel):
    items: list[AdvanceResponse]


class RevertRequest(BaseModel):
    target_stage: CropStage
    reason: str | None = None


class ShiftRequest(BaseModel):
    new_start: datetime = Field(..., description="Neuer Startzeitpunkt")


class ShiftResponse(BaseModel):
    tray_id: UUID
    shifted_seconds: float
    shifted_display: str | None


class CancelTrayRequest(BaseModel):
    reason: str | None = None


class WateringResponse(BaseModel):
    tray_id: UUID
    watering_suspended: bool


class BulkCountResponse(BaseModel):
    changed: int


class ReadinessCheckResponse(BaseModel):
    order_ids: list[UUID]
