"""
Produktionsplanung - Rückwärtsterminierung von Bestellungen.

Aus Lieferdatum und Positionen einer Bestellung wird pro Sorte und
Erntedatum berechnet, wann eingeweicht und gesät werden muss und wie viele
Trays benötigt werden. Pläne werden über den AggregationService angelegt
bzw. mit bestehenden Plänen gebündelt.

    Erntedatum   = Lieferdatum - harvest_offset_days (oder Datum der Position)
    Aussaat bis  = Erntedatum - (Keimung + Dunkelphase + Lichtphase)
    Einweichen   = Aussaat - ceil(Einweichstunden / 24) Tage
    Trays        = ceil(Gramm * (1 + Puffer/100) / Ertrag pro Tray)
"""
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.events import EventBus, event_bus, OrderInfeasible
from app.core.exceptions import BusinessRuleViolation, NotFoundError
from app.models.enums import OrderLineUnit, PlanStatus
from app.models.order import Order, OrderLine
from app.models.planning import ProductionPlan
from app.models.product import GrowPlan, ProductMix
from app.models.production import GrowBatch
from app.models.seed import Seed
from app.services.aggregation import AggregationService, PlanProposal
from app.services.durations import DurationProfile, get_active_grow_plan
from app.services.lifecycle import LifecycleMonitor
from app.services.yield_calculator import HarvestYieldCalculator

logger = logging.getLogger(__name__)

# Issue-Codes
ISSUE_PLANTING_DATE_IN_PAST = "planting date in past"
ISSUE_SOAK_DATE_IN_PAST = "soak date in past"
ISSUE_TOO_SOON = "too soon"
ISSUE_PROFILE_NOT_FOUND = "duration profile not found"
ISSUE_NO_YIELD = "no yield configured"
ISSUE_MANUAL_REVIEW = "manual review required"

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"


@dataclass
class PlanningIssue:
    """Problem bei der Planung einer Sorte"""
    seed_id: Optional[UUID]
    variety: str
    issue: str
    severity: str
    message: str
    harvest_date: Optional[date] = None
    plant_date: Optional[date] = None
    days_overdue: Optional[int] = None

    @property
    def is_blocking(self) -> bool:
        return self.severity == SEVERITY_ERROR

    @property
    def key(self) -> Optional[tuple[UUID, date]]:
        if self.seed_id is None or self.harvest_date is None:
            return None
        return (self.seed_id, self.harvest_date)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "seed_id": str(self.seed_id) if self.seed_id else None,
            "variety": self.variety,
            "issue": self.issue,
            "severity": self.severity,
            "message": self.message,
        }
        if self.harvest_date:
            data["harvest_date"] = self.harvest_date.isoformat()
        if self.plant_date:
            data["plant_date"] = self.plant_date.isoformat()
        if self.days_overdue is not None:
            data["days_overdue"] = self.days_overdue
        return data


@dataclass
class PlanningResult:
    success: bool
    plans: list[ProductionPlan] = field(default_factory=list)
    issues: list[PlanningIssue] = field(default_factory=list)

    @property
    def plan_ids(self) -> list[UUID]:
        seen = []
        for plan in self.plans:
            if plan.id not in seen:
                seen.append(plan.id)
        return seen


@dataclass
class _Demand:
    """Bedarf je Sorte und Erntedatum"""
    grams: Decimal = Decimal("0")        # Schnittware
    live_trays: Decimal = Decimal("0")   # Lebende Trays (ohne Puffer)
    line_ids: list[str] = field(default_factory=list)


def calculate_trays(grams: Decimal, buffer_percentage: Decimal, yield_per_tray: Decimal) -> int:
    """Trays für eine Grammzahl inklusive Sicherheitspuffer"""
    if grams <= 0:
        return 0
    return math.ceil(grams * (1 + buffer_percentage / Decimal("100")) / yield_per_tray)


class PlanningService:
    """Rückwärtsterminierung und Plan-Verwaltung"""

    def __init__(self, db: Session, bus: EventBus = event_bus):
        self.db = db
        self.bus = bus
        self.settings = get_settings()
        self.aggregation = AggregationService(db, bus)

    # ==================== TERMINE ====================

    def harvest_date_for(self, order: Order, line: OrderLine) -> date:
        if line.harvest_date:
            return line.harvest_date
        return order.delivery_date - timedelta(days=self.settings.harvest_offset_days)

    @staticmethod
    def plant_by_date(profile: DurationProfile, harvest_date: date) -> date:
        return harvest_date - timedelta(days=profile.total_growing_days)

    @staticmethod
    def seed_soak_date(profile: DurationProfile, plant_by: date) -> Optional[date]:
        if not profile.has_soaking:
            return None
        return plant_by - timedelta(days=profile.soak_days)

    def planning_yield(self, profile: DurationProfile, today: date) -> tuple[Decimal, str]:
        """Ertrag pro Tray für die Planung: Profil oder gewichtete Historie"""
        if self.settings.use_historical_yield:
            historical = HarvestYieldCalculator(self.db).weighted_yield(profile.seed_id, today)
            if historical and historical > 0:
                return historical, "history"
        return profile.yield_grams_per_unit, "profile"

    # ==================== BEDARF ====================

    def collect_demand(self, order: Order) -> dict[tuple[UUID, date], _Demand]:
        """Bedarf je Sorte und Erntedatum, Mischungen werden aufgeteilt"""
        demand: dict[tuple[UUID, date], _Demand] = defaultdict(_Demand)
        for line in order.lines:
            harvest_date = self.harvest_date_for(order, line)
            quantity = Decimal(line.quantity)

            if line.seed_id:
                shares = [(line.seed_id, Decimal("100"))]
            elif line.mix_id:
                mix = line.mix or self.db.get(ProductMix, line.mix_id)
                shares = [(c.seed_id, Decimal(c.percentage)) for c in mix.components]
            else:
                logger.warning(f"Position {line.position} von {order.order_number} ohne Sorte übersprungen")
                continue

            for seed_id, percentage in shares:
                entry = demand[(seed_id, harvest_date)]
                share = quantity * percentage / Decimal("100")
                if line.unit == OrderLineUnit.TRAY:
                    entry.live_trays += share
                else:
                    entry.grams += share
                entry.line_ids.append(str(line.id))
        return dict(demand)

    # ==================== VORSCHLÄGE ====================

    def propose(
        self,
        order: Order,
        today: Optional[date] = None,
    ) -> tuple[list[PlanProposal], list[PlanningIssue]]:
        """Berechnet Planvorschläge und Probleme, ohne etwas zu speichern"""
        today = today or date.today()
        proposals: list[PlanProposal] = []
        issues: list[PlanningIssue] = []

        for (seed_id, harvest_date), demand in self.collect_demand(order).items():
            seed = self.db.get(Seed, seed_id)
            variety = seed.name if seed else str(seed_id)

            grow_plan = get_active_grow_plan(self.db, seed_id)
            if not grow_plan:
                issues.append(PlanningIssue(
                    seed_id=seed_id, variety=variety, issue=ISSUE_PROFILE_NOT_FOUND,
                    severity=SEVERITY_ERROR, harvest_date=harvest_date,
                    message=f"Kein aktives Wachstumsprofil für {variety}",
                ))
                continue

            profile = DurationProfile.from_grow_plan(
                grow_plan, Decimal(str(self.settings.default_buffer_percentage))
            )
            yield_per_tray, yield_source = self.planning_yield(profile, today)
            if yield_per_tray <= 0:
                issues.append(PlanningIssue(
                    seed_id=seed_id, variety=variety, issue=ISSUE_NO_YIELD,
                    severity=SEVERITY_ERROR, harvest_date=harvest_date,
                    message=f"Kein Ertrag pro Tray für {variety} gepflegt",
                ))
                continue

            plant_by = self.plant_by_date(profile, harvest_date)
            soak_date = self.seed_soak_date(profile, plant_by)
            issues.extend(self._schedule_issues(seed_id, variety, harvest_date, plant_by, soak_date, today))

            buffer = profile.buffer_percentage
            cut_trays = calculate_trays(demand.grams, buffer, yield_per_tray)
            live_trays = math.ceil(demand.live_trays)
            grams_needed = demand.grams + demand.live_trays * yield_per_tray

            proposals.append(PlanProposal(
                seed_id=seed_id,
                grow_plan_id=grow_plan.id,
                harvest_date=harvest_date,
                plant_by_date=plant_by,
                seed_soak_date=soak_date,
                trays_needed=max(cut_trays + live_trays, 1),
                grams_needed=grams_needed.quantize(Decimal("0.01")),
                calculation_details={
                    "order_number": order.order_number,
                    "delivery_date": order.delivery_date.isoformat(),
                    "harvest_offset_days": self.settings.harvest_offset_days,
                    "total_growing_days": profile.total_growing_days,
                    "seed_soak_hours": profile.seed_soak_hours,
                    "germination_days": profile.germination_days,
                    "blackout_days": profile.blackout_days,
                    "light_days": profile.light_days,
                    "buffer_percentage": str(buffer),
                    "yield_grams_per_unit": str(yield_per_tray),
                    "yield_source": yield_source,
                    "cut_grams": str(demand.grams),
                    "live_trays": str(demand.live_trays),
                    "order_line_ids": demand.line_ids,
                    "calculated_at": datetime.utcnow().isoformat(),
                },
            ))
        return proposals, issues

    def _schedule_issues(
        self,
        seed_id: UUID,
        variety: str,
        harvest_date: date,
        plant_by: date,
        soak_date: Optional[date],
        today: date,
    ) -> list[PlanningIssue]:
        lead_days = (plant_by - today).days
        if lead_days < 0:
            return [PlanningIssue(
                seed_id=seed_id, variety=variety, issue=ISSUE_PLANTING_DATE_IN_PAST,
                severity=SEVERITY_ERROR, harvest_date=harvest_date, plant_date=plant_by,
                days_overdue=-lead_days,
                message=f"{variety}: Aussaat hätte am {plant_by:%d.%m.%Y} erfolgen müssen",
            )]

        issues = []
        if lead_days < self.settings.min_planting_lead_days:
            issues.append(PlanningIssue(
                seed_id=seed_id, variety=variety, issue=ISSUE_TOO_SOON,
                severity=SEVERITY_WARNING, harvest_date=harvest_date, plant_date=plant_by,
                message=f"{variety}: nur {lead_days} Tage bis zur Aussaat",
            ))
        if soak_date is not None and soak_date < today:
            issues.append(PlanningIssue(
                seed_id=seed_id, variety=variety, issue=ISSUE_SOAK_DATE_IN_PAST,
                severity=SEVERITY_WARNING, harvest_date=harvest_date, plant_date=plant_by,
                days_overdue=(today - soak_date).days,
                message=f"{variety}: Einweichen hätte am {soak_date:%d.%m.%Y} beginnen müssen",
            ))
        return issues

    # ==================== BESTELLUNGEN ====================

    def _split(
        self,
        proposals: list[PlanProposal],
        issues: list[PlanningIssue],
    ) -> tuple[list[PlanProposal], set[tuple[UUID, date]]]:
        blocked = {i.key for i in issues if i.is_blocking and i.key is not None}
        return [p for p in proposals if p.key not in blocked], blocked

    def _report_infeasible(self, order: Order, issues: list[PlanningIssue]) -> None:
        blocking = [i for i in issues if i.is_blocking]
        if not blocking:
            return
        logger.warning(f"Bestellung {order.order_number}: {len(blocking)} Sorten nicht planbar")
        self.bus.publish(self.db, OrderInfeasible(
            order_id=order.id,
            issues=tuple(i.to_dict() for i in blocking),
        ))

    def generate_plans_for_order(
        self,
        order: Order,
        today: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> PlanningResult:
        """
        Erstellt bzw. bündelt Produktionspläne für eine Bestellung.

        Sorten mit blockierenden Problemen erhalten keinen Plan, alle
        anderen werden unabhängig davon geplant.
        """
        proposals, issues = self.propose(order, today)
        feasible, _ = self._split(proposals, issues)

        plans = [self.aggregation.attach(order, proposal, now) for proposal in feasible]
        self._report_infeasible(order, issues)

        result = PlanningResult(
            success=not any(i.is_blocking for i in issues),
            plans=plans,
            issues=issues,
        )
        logger.info(
            f"Planung {order.order_number}: {len(result.plan_ids)} Pläne, {len(issues)} Hinweise"
        )
        return result

    def update_plans_for_order(
        self,
        order: Order,
        today: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> PlanningResult:
        """Plant eine geänderte Bestellung neu (Lieferdatum oder Positionen)"""
        proposals, issues = self.propose(order, today)
        feasible, blocked = self._split(proposals, issues)

        outcome = self.aggregation.update_order(order, feasible, retain_keys=blocked, now=now)
        if outcome.review_required:
            issues.append(PlanningIssue(
                seed_id=None, variety="", issue=ISSUE_MANUAL_REVIEW, severity=SEVERITY_ERROR,
                message="Für betroffene Pläne existieren bereits Trays, manuelle Prüfung erforderlich",
            ))
            plans = [self.db.get(ProductionPlan, plan_id) for plan_id in outcome.review_plan_ids]
            return PlanningResult(success=False, plans=plans, issues=issues)

        self._report_infeasible(order, issues)
        return PlanningResult(
            success=not any(i.is_blocking for i in issues),
            plans=outcome.plans,
            issues=issues,
        )

    def cancel_order(self, order: Order, reason: Optional[str] = None) -> list[ProductionPlan]:
        """Entfernt eine stornierte Bestellung aus allen offenen Plänen"""
        return self.aggregation.remove_order(order, reason or f"Bestellung {order.order_number} storniert")

    # ==================== PLAN-STATUS ====================

    def get_plan(self, plan_id: UUID) -> ProductionPlan:
        plan = self.db.get(ProductionPlan, plan_id)
        if not plan:
            raise NotFoundError("Produktionsplan nicht gefunden")
        return plan

    def _record_status(self, plan: ProductionPlan, status: PlanStatus, now: datetime, **extra) -> None:
        plan.append_details_entry("status_history", {
            "status": status.value,
            "timestamp": now.isoformat(),
            **extra,
        })

    def approve_plan(self, plan_id: UUID, approver: str, now: Optional[datetime] = None) -> ProductionPlan:
        """Gibt einen Entwurf frei (DRAFT -> ACTIVE)"""
        plan = self.get_plan(plan_id)
        if plan.status != PlanStatus.DRAFT:
            raise BusinessRuleViolation("Nur Entwürfe können freigegeben werden")
        now = now or datetime.utcnow()
        plan.status = PlanStatus.ACTIVE
        plan.approved_by = approver
        plan.approved_at = now
        self._record_status(plan, PlanStatus.ACTIVE, now, user=approver)
        self.db.flush()
        logger.info(f"Produktionsplan {plan.id} freigegeben von {approver}")
        return plan

    def cancel_plan(self, plan_id: UUID, reason: str, now: Optional[datetime] = None) -> ProductionPlan:
        """Storniert einen offenen Plan, die Mengen bleiben eingefroren"""
        plan = self.get_plan(plan_id)
        if not plan.is_open:
            raise BusinessRuleViolation("Nur offene Pläne können storniert werden")
        now = now or datetime.utcnow()
        plan.status = PlanStatus.CANCELLED
        plan.cancelled_at = now
        plan.cancel_reason = reason
        self._record_status(plan, PlanStatus.CANCELLED, now, reason=reason)
        self.db.flush()
        logger.info(f"Produktionsplan {plan.id} storniert: {reason}")
        return plan

    def complete_plan(self, plan_id: UUID, now: Optional[datetime] = None) -> ProductionPlan:
        plan = self.get_plan(plan_id)
        if plan.status != PlanStatus.ACTIVE:
            raise BusinessRuleViolation("Nur freigegebene Pläne können abgeschlossen werden")
        now = now or datetime.utcnow()
        plan.status = PlanStatus.COMPLETED
        plan.completed_at = now
        self._record_status(plan, PlanStatus.COMPLETED, now)
        self.db.flush()
        return plan

    def list_overdue_plans(self, today: Optional[date] = None) -> list[ProductionPlan]:
        """Entwürfe, deren Aussaattermin überschritten oder knapp ist"""
        today = today or date.today()
        horizon = today + timedelta(days=self.settings.urgent_plan_days)
        return list(self.db.execute(
            select(ProductionPlan)
            .where(
                ProductionPlan.status == PlanStatus.DRAFT,
                ProductionPlan.plant_by_date <= horizon,
            )
            .order_by(ProductionPlan.plant_by_date)
        ).scalars().all())

    # ==================== TRAYS ====================

    def allocate_trays(self, plan: ProductionPlan, count: int) -> list[Optional[UUID]]:
        """Verteilt `count` Trays in Beitragsreihenfolge auf die Bestellungen"""
        allocation: list[Optional[UUID]] = []
        for contribution in plan.active_contributions:
            take = min(contribution.trays, count - len(allocation))
            allocation.extend([contribution.order_id] * take)
        while len(allocation) < count:
            allocation.append(plan.order_id)
        return allocation

    def create_trays_for_plan(
        self,
        plan_id: UUID,
        tray_numbers: list[str],
        started_at: Optional[datetime] = None,
        regal_position: Optional[str] = None,
        notes: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> GrowBatch:
        """Legt für einen freigegebenen Plan eine Charge an"""
        plan = self.get_plan(plan_id)
        if plan.status != PlanStatus.ACTIVE:
            raise BusinessRuleViolation("Trays können nur für freigegebene Pläne angelegt werden")

        grow_plan = plan.grow_plan or self.db.get(GrowPlan, plan.grow_plan_id)
        monitor = LifecycleMonitor(self.db, self.bus)
        return monitor.start_batch(
            grow_plan,
            tray_numbers,
            started_at=started_at,
            production_plan=plan,
            order_ids=self.allocate_trays(plan, len(tray_numbers)),
            regal_position=regal_position,
            notes=notes,
            user_name=user_name,
        )
