from typing import Optional
"""
Pydantic Schemas für Saatgut
"""
from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class SeedBase(BaseModel):
    """Basis-Schema für Saatgut"""
    name: str = Field(..., min_length=1, max_length=100, description="Name der Sorte")
    sorte: Optional[str] = Field(None, max_length=100, description="Sortenbezeichnung")
    lieferant: Optional[str] = Field(None, max_length=200, description="Lieferant")
    notizen: Optional[str] = Field(None, description="Notizen")


class SeedCreate(SeedBase):
    """Schema zum Erstellen einer Saatgut-Sorte"""
    pass


class SeedUpdate(BaseModel):
    """Schema zum Aktualisieren einer Saatgut-Sorte"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    sorte: Optional[str] = None
    lieferant: Optional[str] = None
    notizen: Optional[str] = None
    aktiv: Optional[bool] = None


class SeedResponse(SeedBase):
    """Schema für Saatgut-Antwort"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    aktiv: bool
    created_at: datetime
    updated_at: datetime


class SeedListResponse(BaseModel):
    """Schema für Saatgut-Liste"""
    items: list[SeedResponse]
    total: int
    page: int
    page_size: int
