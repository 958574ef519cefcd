from typing import Optional
"""
Saatgut-Models: Seed (Sorte)
"""

import uuid
from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, Text
from sqlalchemy.types import Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship


from app.database import Base


class Seed(Base):
    """
    Saatgut-Sorte (Variety).
    Die Wachstumsparameter liegen im zugehörigen GrowPlan.
    """
    __tablename__ = "seeds"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    sorte: Mapped[Optional[str]] = mapped_column(String(100))
    lieferant: Mapped[Optional[str]] = mapped_column(String(200))
    notizen: Mapped[Optional[str]] = mapped_column(Text)

    # Status
    aktiv: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Beziehungen
    grow_plans: Mapped[list["GrowPlan"]] = relationship(
        "GrowPlan", back_populates="seed", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Seed(name='{self.name}', id={self.id})>"


# Import für Type Hints
from app.models.product import GrowPlan
