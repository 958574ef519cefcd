"""
Bündelung von Bestellbedarf in Produktionsplänen.

Pro Sorte und Erntedatum gibt es höchstens einen offenen Plan. Neue
Bestellungen werden als Beitrag (PlanContribution) eingetragen, die
Plan-Mengen sind immer die Summe der aktiven Beiträge. Jeder Schritt wird
in calculation_details protokolliert.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.events import EventBus, event_bus, PlanReviewRequired
from app.core.exceptions import TransientConflict
from app.models.enums import CropStage, PlanStatus
from app.models.order import Order
from app.models.planning import ProductionPlan, PlanContribution
from app.models.production import Tray

logger = logging.getLogger(__name__)


@dataclass
class PlanProposal:
    """Berechneter Bedarf einer Bestellung für eine Sorte und ein Erntedatum"""
    seed_id: UUID
    grow_plan_id: UUID
    harvest_date: date
    plant_by_date: date
    seed_soak_date: Optional[date]
    trays_needed: int
    grams_needed: Decimal
    calculation_details: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[UUID, date]:
        return (self.seed_id, self.harvest_date)


@dataclass
class AggregationOutcome:
    plans: list[ProductionPlan] = field(default_factory=list)
    review_plan_ids: list[UUID] = field(default_factory=list)

    @property
    def review_required(self) -> bool:
        return bool(self.review_plan_ids)


def _history_entry(order_id: UUID, trays: int, grams: Decimal, now: datetime, action: str) -> dict:
    return {
        "order_id": str(order_id),
        "trays_added": trays,
        "grams_added": str(grams),
        "timestamp": now.isoformat(),
        "action": action,
    }


class AggregationService:
    """Find-or-create für Produktionspläne mit Beitragsverwaltung"""

    def __init__(self, db: Session, bus: EventBus = event_bus):
        self.db = db
        self.bus = bus

    def find_open_plans(self, seed_id: UUID, harvest_date: date) -> list[ProductionPlan]:
        """Offene Pläne, ältester zuerst"""
        return list(self.db.execute(
            select(ProductionPlan)
            .where(
                ProductionPlan.seed_id == seed_id,
                ProductionPlan.harvest_date == harvest_date,
                ProductionPlan.status.in_(PlanStatus.open_states()),
            )
            .order_by(ProductionPlan.created_at, ProductionPlan.id)
        ).scalars().all())

    def open_contributions(self, order_id: UUID) -> list[PlanContribution]:
        return list(self.db.execute(
            select(PlanContribution)
            .join(PlanContribution.plan)
            .where(
                PlanContribution.order_id == order_id,
                PlanContribution.is_active == True,
                ProductionPlan.status.in_(PlanStatus.open_states()),
            )
        ).scalars().all())

    # ==================== SUMMEN ====================

    def recalculate(self, plan: ProductionPlan) -> None:
        """Mengen aus den aktiven Beiträgen neu berechnen"""
        active = plan.active_contributions
        plan.trays_needed = sum(c.trays for c in active)
        plan.grams_needed = sum((Decimal(c.grams) for c in active), Decimal("0"))

    # ==================== ANLEGEN / BÜNDELN ====================

    def attach(self, order: Order, proposal: PlanProposal, now: Optional[datetime] = None) -> ProductionPlan:
        """
        Trägt den Bedarf einer Bestellung in den passenden offenen Plan ein
        oder legt einen neuen Plan an.
        """
        now = now or datetime.utcnow()
        host = self._find_host(proposal.seed_id, proposal.harvest_date, now)
        if host is not None:
            self._merge(host, order, proposal, now)
            return host

        try:
            with self.db.begin_nested():
                plan = self._create_plan(order, proposal, now)
        except IntegrityError:
            # Paralleler Request hat den Plan zuerst angelegt
            logger.warning(
                f"Plan für Sorte {proposal.seed_id} / {proposal.harvest_date} existiert bereits, "
                f"führe zusammen"
            )
            host = self._find_host(proposal.seed_id, proposal.harvest_date, now)
            if host is None:
                raise TransientConflict("Produktionsplan konnte nicht angelegt werden, bitte erneut versuchen")
            self._merge(host, order, proposal, now)
            return host
        return plan

    def _create_plan(self, order: Order, proposal: PlanProposal, now: datetime) -> ProductionPlan:
        details = dict(proposal.calculation_details)
        details["aggregation_history"] = [
            _history_entry(order.id, proposal.trays_needed, proposal.grams_needed, now, "create")
        ]
        plan = ProductionPlan(
            seed_id=proposal.seed_id,
            grow_plan_id=proposal.grow_plan_id,
            order_id=order.id,
            harvest_date=proposal.harvest_date,
            plant_by_date=proposal.plant_by_date,
            seed_soak_date=proposal.seed_soak_date,
            trays_needed=proposal.trays_needed,
            grams_needed=proposal.grams_needed,
            status=PlanStatus.DRAFT,
            calculation_details=details,
            created_at=now,
        )
        plan.contributions.append(PlanContribution(
            order_id=order.id,
            trays=proposal.trays_needed,
            grams=proposal.grams_needed,
            is_active=True,
            created_at=now,
        ))
        self.db.add(plan)
        self.db.flush()
        logger.info(
            f"Neuer Produktionsplan {plan.id}: {plan.trays_needed} Trays, "
            f"Ernte {plan.harvest_date}"
        )
        return plan

    def _merge(self, plan: ProductionPlan, order: Order, proposal: PlanProposal, now: datetime) -> None:
        existing = next((c for c in plan.active_contributions if c.order_id == order.id), None)
        if existing is not None:
            trays_delta = proposal.trays_needed - existing.trays
            grams_delta = proposal.grams_needed - Decimal(existing.grams)
            if trays_delta == 0 and grams_delta == 0:
                return
            existing.trays = proposal.trays_needed
            existing.grams = proposal.grams_needed
            entry = _history_entry(order.id, trays_delta, grams_delta, now, "update")
        else:
            plan.contributions.append(PlanContribution(
                order_id=order.id,
                trays=proposal.trays_needed,
                grams=proposal.grams_needed,
                is_active=True,
                created_at=now,
            ))
            entry = _history_entry(order.id, proposal.trays_needed, proposal.grams_needed, now, "merge")

        self.recalculate(plan)
        plan.append_details_entry("aggregation_history", entry)
        self.db.flush()
        logger.info(
            f"Bestellung {order.order_number} in Plan {plan.id} gebündelt "
            f"({plan.trays_needed} Trays gesamt)"
        )

    def _find_host(self, seed_id: UUID, harvest_date: date, now: datetime) -> Optional[ProductionPlan]:
        """Ältester offener Plan, weitere Duplikate werden in ihn überführt und storniert"""
        plans = self.find_open_plans(seed_id, harvest_date)
        if not plans:
            return None
        host, duplicates = plans[0], plans[1:]
        for duplicate in duplicates:
            self._absorb_duplicate(host, duplicate, now)
        return host

    def _absorb_duplicate(self, host: ProductionPlan, duplicate: ProductionPlan, now: datetime) -> None:
        reason = f"Doppelter Plan, zusammengeführt in {host.id}"
        for contribution in duplicate.active_contributions:
            contribution.is_active = False
            contribution.removed_at = now
            contribution.removal_reason = reason
            current = next((c for c in host.active_contributions if c.order_id == contribution.order_id), None)
            if current is not None:
                current.trays += contribution.trays
                current.grams = Decimal(current.grams) + Decimal(contribution.grams)
            else:
                host.contributions.append(PlanContribution(
                    order_id=contribution.order_id,
                    trays=contribution.trays,
                    grams=contribution.grams,
                    is_active=True,
                    created_at=now,
                ))
            host.append_details_entry(
                "aggregation_history",
                _history_entry(contribution.order_id, contribution.trays, Decimal(contribution.grams), now, "merge"),
            )
        for tray in duplicate.trays:
            tray.production_plan_id = host.id

        duplicate.status = PlanStatus.CANCELLED
        duplicate.cancelled_at = now
        duplicate.cancel_reason = reason
        self.recalculate(host)
        self.db.flush()
        logger.warning(f"Produktionsplan {duplicate.id} storniert: {reason}")

    # ==================== ENTFERNEN ====================

    def _remove_contribution(self, contribution: PlanContribution, reason: str, now: datetime) -> None:
        plan = contribution.plan
        contribution.is_active = False
        contribution.removed_at = now
        contribution.removal_reason = reason
        plan.append_details_entry("removal_history", {
            "order_id": str(contribution.order_id),
            "trays_removed": contribution.trays,
            "grams_removed": str(contribution.grams),
            "timestamp": now.isoformat(),
            "reason": reason,
        })

        remaining = plan.active_contributions
        if not remaining:
            # Mengen bleiben auf dem letzten Stand eingefroren
            plan.status = PlanStatus.CANCELLED
            plan.cancelled_at = now
            plan.cancel_reason = reason
            logger.info(f"Produktionsplan {plan.id} storniert: keine Beiträge mehr")
            return

        self.recalculate(plan)
        if plan.order_id == contribution.order_id:
            plan.order_id = remaining[0].order_id
        logger.info(f"Beitrag von Bestellung {contribution.order_id} aus Plan {plan.id} entfernt")

    def remove_order(self, order: Order, reason: str, now: Optional[datetime] = None) -> list[ProductionPlan]:
        """Entfernt die Bestellung aus allen offenen Plänen"""
        now = now or datetime.utcnow()
        plans = []
        for contribution in self.open_contributions(order.id):
            self._remove_contribution(contribution, reason, now)
            plans.append(contribution.plan)
        self.db.flush()
        return plans

    # ==================== ÄNDERN ====================

    def _plans_with_trays(self, plans: list[ProductionPlan]) -> list[ProductionPlan]:
        ids = [p.id for p in plans]
        if not ids:
            return []
        with_trays = set(self.db.execute(
            select(Tray.production_plan_id)
            .where(Tray.production_plan_id.in_(ids), Tray.current_stage != CropStage.CANCELLED)
            .distinct()
        ).scalars().all())
        return [p for p in plans if p.id in with_trays]

    def update_order(
        self,
        order: Order,
        proposals: list[PlanProposal],
        retain_keys: Optional[set[tuple[UUID, date]]] = None,
        now: Optional[datetime] = None,
    ) -> AggregationOutcome:
        """
        Schreibt den Beitrag einer geänderten Bestellung neu.

        Sind für einen betroffenen Plan schon Trays angelegt, wird nichts
        geändert und eine manuelle Prüfung angefordert. `retain_keys` sind
        Sorte/Erntedatum-Paare, deren bestehender Beitrag bleiben soll.
        """
        now = now or datetime.utcnow()
        retain_keys = retain_keys or set()
        current = self.open_contributions(order.id)

        locked = self._plans_with_trays([c.plan for c in current])
        if locked:
            plan_ids = tuple(p.id for p in locked)
            reason = "Bestellung geändert, für den Plan existieren bereits Trays"
            self.bus.publish(self.db, PlanReviewRequired(order_id=order.id, plan_ids=plan_ids, reason=reason))
            logger.warning(f"Bestellung {order.order_number}: manuelle Prüfung für {len(plan_ids)} Pläne nötig")
            return AggregationOutcome(review_plan_ids=list(plan_ids))

        wanted = {p.key for p in proposals} | retain_keys
        for contribution in current:
            key = (contribution.plan.seed_id, contribution.plan.harvest_date)
            if key not in wanted:
                self._remove_contribution(contribution, "Bestellung geändert", now)
        self.db.flush()

        outcome = AggregationOutcome()
        for proposal in proposals:
            outcome.plans.append(self.attach(order, proposal, now))
        return outcome
