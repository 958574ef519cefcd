"""
Pydantic Schemas für Bestellungen (Header-Line Architektur)
"""
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from typing import Optional

from app.models.enums import OrderStatus, OrderLineUnit
from app.schemas.planning import PlanningResultResponse


# ==================== ORDER LINE SCHEMAS ====================

class OrderLineBase(BaseModel):
    """Basis-Schema für Bestellposition"""
    seed_id: Optional[UUID] = Field(None, description="Sorte")
    mix_id: Optional[UUID] = Field(None, description="Mischung")
    quantity: Decimal = Field(..., gt=0, description="Menge")
    unit: OrderLineUnit = Field(default=OrderLineUnit.G, description="Einheit (G oder TRAY)")
    harvest_date: Optional[date] = Field(None, description="Abweichendes Erntedatum")

    @model_validator(mode="after")
    def check_product(self):
        if (self.seed_id is None) == (self.mix_id is None):
            raise ValueError("Genau eine Sorte oder eine Mischung angeben")
        return self


class OrderLineCreate(OrderLineBase):
    """Schema zum Erstellen einer Bestellposition"""
    pass


class OrderLineResponse(BaseModel):
    """Schema für Bestellposition-Antwort"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    position: int
    seed_id: Optional[UUID]
    mix_id: Optional[UUID]
    quantity: Decimal
    unit: OrderLineUnit
    harvest_date: Optional[date]


# ==================== ORDER HEADER SCHEMAS ====================

class OrderBase(BaseModel):
    """Basis-Schema für Bestellung (Header)"""
    customer_name: str = Field(..., min_length=1, max_length=200, description="Kunde")
    delivery_date: date = Field(..., description="Lieferdatum")
    notes: Optional[str] = Field(None, description="Notizen")


class OrderCreate(OrderBase):
    """Schema zum Erstellen einer Bestellung"""
    lines: list[OrderLineCreate] = Field(..., description="Bestellpositionen")

    @field_validator('lines')
    @classmethod
    def validate_lines(cls, v):
        if not v:
            raise ValueError("Mindestens eine Position erforderlich")
        return v


class OrderUpdate(BaseModel):
    """
    Schema zum Aktualisieren einer Bestellung.
    Werden Positionen übergeben, ersetzen sie alle bisherigen.
    """
    customer_name: Optional[str] = Field(None, min_length=1, max_length=200)
    delivery_date: Optional[date] = None
    notes: Optional[str] = None
    lines: Optional[list[OrderLineCreate]] = None

    @field_validator('lines')
    @classmethod
    def validate_lines(cls, v):
        if v is not None and not v:
            raise ValueError("Mindestens eine Position erforderlich")
        return v


class OrderCancel(BaseModel):
    reason: Optional[str] = Field(None, description="Grund für die Stornierung")


class OrderResponse(BaseModel):
    """Schema für Bestell-Antwort (Header)"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    customer_name: str
    order_date: datetime
    delivery_date: date
    status: OrderStatus
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime

    lines: list[OrderLineResponse] = []


class OrderPlanningResponse(BaseModel):
    """Bestellung mit Ergebnis der Produktionsplanung"""
    order: OrderResponse
    planning: PlanningResultResponse


# ==================== ORDER AUDIT LOG SCHEMAS ====================

class OrderAuditLogResponse(BaseModel):
    """Schema für Audit-Log-Einträge"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    action: str
    field_name: Optional[str]
    old_values: Optional[dict]
    new_values: Optional[dict]
    user_name: Optional[str]
    created_at: datetime
    reason: Optional[str]


# ==================== LIST SCHEMAS ====================

class OrderListResponse(BaseModel):
    """Schema für Bestell-Liste"""
    items: list[OrderResponse]
    total: int
