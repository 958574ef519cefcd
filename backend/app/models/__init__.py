"""
SQLAlchemy Models für Minga-Greens Produktionsplanung
"""
# Katalog
from app.models.seed import Seed
from app.models.product import GrowPlan, ProductMix, MixComponent

# Bestellungen
from app.models.order import Order, OrderLine, OrderAuditLog

# Planung & Produktion
from app.models.planning import ProductionPlan, PlanContribution
from app.models.production import GrowBatch, Tray, StageTransitionLog, Harvest, HarvestLine
from app.models.events import DomainEvent

from app.models.enums import (
    OrderStatus,
    OrderLineUnit,
    PlanStatus,
    CropStage,
    StageAction,
    DomainEventType,
)

__all__ = [
    # Katalog
    "Seed",
    "GrowPlan",
    "ProductMix",
    "MixComponent",
    # Bestellungen
    "Order",
    "OrderLine",
    "OrderAuditLog",
    # Planung & Produktion
    "ProductionPlan",
    "PlanContribution",
    "GrowBatch",
    "Tray",
    "StageTransitionLog",
    "Harvest",
    "HarvestLine",
    "DomainEvent",
    # Enums
    "OrderStatus",
    "OrderLineUnit",
    "PlanStatus",
    "CropStage",
    "StageAction",
    "DomainEventType",
]
