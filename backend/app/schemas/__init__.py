"""
Pydantic Schemas für API Request/Response Validierung
"""
from app.schemas.seed import SeedCreate, SeedUpdate, SeedResponse, SeedListResponse
from app.schemas.product import (
    GrowPlanCreate, GrowPlanUpdate, GrowPlanResponse, GrowPlanListResponse,
    YieldStatisticsResponse, MixComponentSchema, ProductMixCreate, ProductMixResponse,
)
from app.schemas.planning import (
    ProductionPlanResponse, ProductionPlanListResponse, PlanContributionResponse,
    PlanningIssueResponse, PlanningResultResponse,
    PlanApproveRequest, PlanCancelRequest, CreateTraysRequest,
)
from app.schemas.order import (
    OrderLineCreate, OrderLineResponse, OrderCreate, OrderUpdate, OrderCancel,
    OrderResponse, OrderPlanningResponse, OrderAuditLogResponse, OrderListResponse,
)
from app.schemas.production import (
    GrowBatchCreate, GrowBatchResponse, TrayResponse, TrayListResponse, StageLogResponse,
    StageTimestampRequest, BulkTrayRequest, AdvanceResponse, BulkAdvanceResponse,
    RevertRequest, ShiftRequest, ShiftResponse, CancelTrayRequest,
    WateringResponse, BulkCountResponse, ReadinessCheckResponse,
)
from app.schemas.harvest import (
    HarvestLineInput, HarvestSubmission, HarvestLineResponse, HarvestResponse, HarvestListResponse,
)

__all__ = [
    # Saatgut
    "SeedCreate", "SeedUpdate", "SeedResponse", "SeedListResponse",
    # Wachstumsprofile & Mischungen
    "GrowPlanCreate", "GrowPlanUpdate", "GrowPlanResponse", "GrowPlanListResponse",
    "YieldStatisticsResponse", "MixComponentSchema", "ProductMixCreate", "ProductMixResponse",
    # Planung
    "ProductionPlanResponse", "ProductionPlanListResponse", "PlanContributionResponse",
    "PlanningIssueResponse", "PlanningResultResponse",
    "PlanApproveRequest", "PlanCancelRequest", "CreateTraysRequest",
    # Bestellungen
    "OrderLineCreate", "OrderLineResponse", "OrderCreate", "OrderUpdate", "OrderCancel",
    "OrderResponse", "OrderPlanningResponse", "OrderAuditLogResponse", "OrderListResponse",
    # Produktion
    "GrowBatchCreate", "GrowBatchResponse", "TrayResponse", "TrayListResponse", "StageLogResponse",
    "StageTimestampRequest", "BulkTrayRequest", "AdvanceResponse", "BulkAdvanceResponse",
    "RevertRequest", "ShiftRequest", "ShiftResponse", "CancelTrayRequest",
    "WateringResponse", "BulkCountResponse", "ReadinessCheckResponse",
    # Ernte
    "HarvestLineInput", "HarvestSubmission", "HarvestLineResponse", "HarvestResponse", "HarvestListResponse",
]
