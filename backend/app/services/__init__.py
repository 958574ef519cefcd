"""
Business Logic Services für Minga-Greens Produktionsplanung
"""
from app.services.durations import DurationProfile
from app.services.planning import PlanningService
from app.services.aggregation import AggregationService
from app.services.lifecycle import LifecycleMonitor
from app.services.harvest import HarvestService
from app.services.yield_calculator import HarvestYieldCalculator

__all__ = [
    "DurationProfile",
    "PlanningService",
    "AggregationService",
    "LifecycleMonitor",
    "HarvestService",
    "HarvestYieldCalculator",
]
