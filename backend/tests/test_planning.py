"""
Tests für die Produktionsplanung (Rückwärtsterminierung)
"""
import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import select

from app.core.exceptions import BusinessRuleViolation, NotFoundError
from app.models.enums import CropStage, DomainEventType, OrderLineUnit, OrderStatus, PlanStatus
from app.models.events import DomainEvent
from app.models.planning import ProductionPlan
from app.services.planning import (
    PlanningService, calculate_trays,
    ISSUE_PLANTING_DATE_IN_PAST, ISSUE_SOAK_DATE_IN_PAST, ISSUE_PROFILE_NOT_FOUND,
    ISSUE_MANUAL_REVIEW, ISSUE_TOO_SOON,
)


def _events(db, event_type):
    return db.execute(
        select(DomainEvent).where(DomainEvent.event_type == event_type)
    ).scalars().all()


class TestTrayCalculation:
    """Tests für die Tray-Berechnung"""

    def test_buffer_rounds_up(self):
        """Test: 1000 g mit 10% Puffer bei 200 g/Tray ergibt 6 Trays"""
        assert calculate_trays(Decimal("1000"), Decimal("10"), Decimal("200")) == 6

    def test_exact_fit(self):
        """Test: Ohne Puffer und bei exakter Teilung keine Aufrundung"""
        assert calculate_trays(Decimal("600"), Decimal("0"), Decimal("200")) == 3

    def test_zero_grams(self):
        """Test: Kein Bedarf ergibt 0 Trays"""
        assert calculate_trays(Decimal("0"), Decimal("10"), Decimal("200")) == 0


class TestGeneratePlans:
    """Tests für generate_plans_for_order"""

    def test_creates_draft_plan(self, db, bus, sunflower, order_factory, today):
        """Test: Bestellung erzeugt einen Entwurf mit rückwärts terminierten Daten"""
        order = order_factory([(sunflower, 1000)], delivery_date=today + timedelta(days=30))

        result = PlanningService(db, bus).generate_plans_for_order(order, today=today)

        assert result.success is True
        assert result.issues == []
        assert len(result.plans) == 1
        plan = result.plans[0]
        assert plan.status == PlanStatus.DRAFT
        assert plan.harvest_date == today + timedelta(days=29)
        assert plan.plant_by_date == today + timedelta(days=19)
        assert plan.seed_soak_date is None
        assert plan.trays_needed == 6
        assert plan.grams_needed == Decimal("1000.00")
        assert plan.order_id == order.id
        assert plan.calculation_details["total_growing_days"] == 10
        assert plan.calculation_details["yield_source"] == "profile"

    def test_soak_date_for_soaked_variety(self, db, bus, pea, order_factory, today):
        """Test: Einweichen beginnt ceil(Stunden/24) Tage vor der Aussaat"""
        order = order_factory([(pea, 900)], delivery_date=today + timedelta(days=30))

        plan = PlanningService(db, bus).generate_plans_for_order(order, today=today).plans[0]

        # 2 + 3 + 7 = 12 Tage Wachstum
        assert plan.plant_by_date == today + timedelta(days=17)
        assert plan.seed_soak_date == today + timedelta(days=16)
        assert plan.trays_needed == 4

    def test_order_stays_draft(self, db, bus, sunflower, order_factory, today):
        """Test: Die Planung ändert den Bestellstatus nicht"""
        order = order_factory([(sunflower, 1000)])
        PlanningService(db, bus).generate_plans_for_order(order, today=today)
        assert order.status == OrderStatus.ENTWURF

    def test_planting_date_in_past(self, db, bus, sunflower, order_factory, today):
        """Test: Zu späte Bestellung erzeugt keinen Plan, aber einen Fehler"""
        order = order_factory([(sunflower, 500)], delivery_date=today + timedelta(days=5))

        result = PlanningService(db, bus).generate_plans_for_order(order, today=today)

        assert result.success is False
        assert result.plans == []
        assert len(result.issues) == 1
        issue = result.issues[0]
        assert issue.issue == ISSUE_PLANTING_DATE_IN_PAST
        assert issue.severity == "error"
        assert issue.days_overdue == 6
        assert issue.plant_date == today - timedelta(days=6)

        events = _events(db, DomainEventType.ORDER_INFEASIBLE)
        assert len(events) == 1
        assert events[0].order_id == order.id
        assert events[0].payload["issues"][0]["issue"] == ISSUE_PLANTING_DATE_IN_PAST

    def test_plant_today_is_feasible(self, db, bus, sunflower, order_factory, today):
        """Test: Aussaat heute ist noch rechtzeitig"""
        order = order_factory([(sunflower, 200)], delivery_date=today + timedelta(days=11))
        result = PlanningService(db, bus).generate_plans_for_order(order, today=today)
        assert result.success is True
        assert result.plans[0].plant_by_date == today

    def test_soak_date_in_past_is_warning(self, db, bus, pea, order_factory, today):
        """Test: Verpasstes Einweichen ist nur eine Warnung"""
        # Ernte in 12 Tagen -> Aussaat heute, Einweichen gestern
        order = order_factory([(pea, 300)], delivery_date=today + timedelta(days=13))

        result = PlanningService(db, bus).generate_plans_for_order(order, today=today)

        assert result.success is True
        assert len(result.plans) == 1
        assert [i.issue for i in result.issues] == [ISSUE_SOAK_DATE_IN_PAST]
        assert result.issues[0].severity == "warning"
        assert result.issues[0].days_overdue == 1

    def test_too_soon_warning(self, db, bus, sunflower, order_factory, today):
        """Test: Unterschreitung der Mindestvorlaufzeit ergibt eine Warnung"""
        service = PlanningService(db, bus)
        service.settings = service.settings.model_copy(update={"min_planting_lead_days": 3})
        order = order_factory([(sunflower, 200)], delivery_date=today + timedelta(days=12))

        result = service.generate_plans_for_order(order, today=today)

        assert result.success is True
        assert [i.issue for i in result.issues] == [ISSUE_TOO_SOON]

    def test_missing_profile(self, db, bus, seed_factory, order_factory, today):
        """Test: Sorte ohne aktives Wachstumsprofil wird gemeldet"""
        seed = seed_factory("Rotkohl")
        order = order_factory([(seed, 500)])

        result = PlanningService(db, bus).generate_plans_for_order(order, today=today)

        assert result.success is False
        assert result.plans == []
        assert result.issues[0].issue == ISSUE_PROFILE_NOT_FOUND
        assert result.issues[0].variety == "Rotkohl"

    def test_varieties_planned_independently(self, db, bus, sunflower, seed_factory, order_factory, today):
        """Test: Eine nicht planbare Sorte blockiert die anderen nicht"""
        unplanned = seed_factory("Rotkohl")
        order = order_factory([(sunflower, 1000), (unplanned, 500)])

        result = PlanningService(db, bus).generate_plans_for_order(order, today=today)

        assert result.success is False
        assert len(result.plans) == 1
        assert result.plans[0].seed_id == sunflower.id

    def test_live_tray_line_without_buffer(self, db, bus, sunflower, order_factory, today):
        """Test: Lebende Trays werden ohne Puffer übernommen"""
        order = order_factory([(sunflower, 3, OrderLineUnit.TRAY)])

        plan = PlanningService(db, bus).generate_plans_for_order(order, today=today).plans[0]

        assert plan.trays_needed == 3
        assert plan.grams_needed == Decimal("600.00")

    def test_mix_split_by_percentage(self, db, bus, sunflower, pea, mix_factory, order_factory, today):
        """Test: Mischungen werden anteilig auf die Sorten verteilt"""
        mix = mix_factory("Salat-Mix", [(sunflower, 50), (pea, 50)])
        order = order_factory([(mix, 1000)])

        result = PlanningService(db, bus).generate_plans_for_order(order, today=today)

        plans = {p.seed_id: p for p in result.plans}
        assert plans[sunflower.id].grams_needed == Decimal("500.00")
        assert plans[sunflower.id].trays_needed == 3
        assert plans[pea.id].grams_needed == Decimal("500.00")
        assert plans[pea.id].trays_needed == 2

    def test_same_variety_lines_are_summed(self, db, bus, sunflower, order_factory, today):
        """Test: Mehrere Positionen derselben Sorte ergeben einen Plan"""
        order = order_factory([(sunflower, 400), (sunflower, 600)])

        result = PlanningService(db, bus).generate_plans_for_order(order, today=today)

        assert len(result.plan_ids) == 1
        assert result.plans[0].trays_needed == 6

    def test_line_harvest_date_override(self, db, bus, sunflower, order_factory, today):
        """Test: Erntedatum der Position hat Vorrang vor dem Lieferdatum"""
        harvest = today + timedelta(days=20)
        order = order_factory([(sunflower, 200, OrderLineUnit.G, harvest)])

        plan = PlanningService(db, bus).generate_plans_for_order(order, today=today).plans[0]

        assert plan.harvest_date == harvest
        assert plan.plant_by_date == today + timedelta(days=10)

    def test_days_to_maturity_fallback(self, db, bus, seed_factory, grow_plan_factory, order_factory, today):
        """Test: Ohne Stufendauern gilt days_to_maturity"""
        seed = seed_factory("Kresse")
        grow_plan_factory(seed, germination_days=0, light_days=0, days_to_maturity=7)
        order = order_factory([(seed, 200)])

        plan = PlanningService(db, bus).generate_plans_for_order(order, today=today).plans[0]

        assert plan.plant_by_date == plan.harvest_date - timedelta(days=7)

    def test_newest_profile_wins(self, db, bus, sunflower, grow_plan_factory, order_factory, today):
        """Test: Das jüngste aktive Profil wird verwendet"""
        newer = grow_plan_factory(sunflower, code="GP-SONNE-2", light_days=6)
        newer.created_at = datetime.utcnow() + timedelta(seconds=1)
        db.flush()
        order = order_factory([(sunflower, 200)])

        plan = PlanningService(db, bus).generate_plans_for_order(order, today=today).plans[0]

        assert plan.grow_plan_id == newer.id
        assert plan.calculation_details["total_growing_days"] == 8

    def test_repeated_generation_is_idempotent(self, db, bus, sunflower, order_factory, today):
        """Test: Wiederholte Planung ändert Mengen und Beiträge nicht"""
        order = order_factory([(sunflower, 1000)])
        service = PlanningService(db, bus)

        first = service.generate_plans_for_order(order, today=today).plans[0]
        second = service.generate_plans_for_order(order, today=today).plans[0]

        assert first.id == second.id
        assert second.trays_needed == 6
        assert len(second.active_contributions) == 1
        assert len(second.aggregation_history) == 1


class TestHistoricalYield:
    """Tests für die optionale Planung mit historischem Ertrag"""

    def test_profile_yield_without_history(self, db, bus, sunflower, order_factory, today):
        """Test: Ohne Ernten wird der Profil-Ertrag verwendet"""
        service = PlanningService(db, bus)
        service.settings = service.settings.model_copy(update={"use_historical_yield": True})
        order = order_factory([(sunflower, 1000)])

        plan = service.generate_plans_for_order(order, today=today).plans[0]

        assert plan.calculation_details["yield_source"] == "profile"
        assert plan.trays_needed == 6


class TestPlanStatus:
    """Tests für Freigabe, Stornierung und Abschluss"""

    @pytest.fixture
    def plan(self, db, bus, sunflower, order_factory, today):
        order = order_factory([(sunflower, 1000)])
        return PlanningService(db, bus).generate_plans_for_order(order, today=today).plans[0]

    def test_approve(self, db, bus, plan):
        """Test: Freigabe setzt ACTIVE mit Freigeber und Zeitpunkt"""
        approved = PlanningService(db, bus).approve_plan(plan.id, "anna")
        assert approved.status == PlanStatus.ACTIVE
        assert approved.approved_by == "anna"
        assert approved.approved_at is not None
        assert approved.calculation_details["status_history"][-1]["status"] == "ACTIVE"

    def test_approve_twice_fails(self, db, bus, plan):
        """Test: Nur Entwürfe können freigegeben werden"""
        service = PlanningService(db, bus)
        service.approve_plan(plan.id, "anna")
        with pytest.raises(BusinessRuleViolation):
            service.approve_plan(plan.id, "anna")

    def test_cancel_freezes_quantities(self, db, bus, plan):
        """Test: Stornierung behält die Mengen"""
        cancelled = PlanningService(db, bus).cancel_plan(plan.id, "Kunde abgesprungen")
        assert cancelled.status == PlanStatus.CANCELLED
        assert cancelled.cancel_reason == "Kunde abgesprungen"
        assert cancelled.trays_needed == 6

    def test_cancel_completed_fails(self, db, bus, plan):
        """Test: Abgeschlossene Pläne können nicht storniert werden"""
        service = PlanningService(db, bus)
        service.approve_plan(plan.id, "anna")
        service.complete_plan(plan.id)
        with pytest.raises(BusinessRuleViolation):
            service.cancel_plan(plan.id, "zu spät")

    def test_complete_requires_active(self, db, bus, plan):
        """Test: Entwürfe können nicht abgeschlossen werden"""
        with pytest.raises(BusinessRuleViolation):
            PlanningService(db, bus).complete_plan(plan.id)

    def test_unknown_plan(self, db, bus):
        """Test: Unbekannter Plan ergibt NotFoundError"""
        import uuid
        with pytest.raises(NotFoundError):
            PlanningService(db, bus).approve_plan(uuid.uuid4(), "anna")

    def test_overdue_and_urgent(self, plan, today):
        """Test: Überfällig und dringend werden aus dem Aussaattermin abgeleitet"""
        assert plan.is_overdue(today) is False
        assert plan.is_overdue(plan.plant_by_date + timedelta(days=1)) is True
        assert plan.is_urgent(2, plan.plant_by_date - timedelta(days=2)) is True
        assert plan.is_urgent(2, plan.plant_by_date - timedelta(days=3)) is False

    def test_list_overdue_plans(self, db, bus, plan):
        """Test: Nur Entwürfe im Dringlichkeitsfenster werden gelistet"""
        service = PlanningService(db, bus)
        assert service.list_overdue_plans(plan.plant_by_date - timedelta(days=10)) == []
        assert [p.id for p in service.list_overdue_plans(plan.plant_by_date - timedelta(days=1))] == [plan.id]

        service.approve_plan(plan.id, "anna")
        assert service.list_overdue_plans(plan.plant_by_date + timedelta(days=1)) == []


class TestCreateTrays:
    """Tests für das Anlegen von Trays aus einem Plan"""

    def test_requires_active_plan(self, db, bus, sunflower, order_factory, today):
        """Test: Trays nur für freigegebene Pläne"""
        order = order_factory([(sunflower, 1000)])
        plan = PlanningService(db, bus).generate_plans_for_order(order, today=today).plans[0]

        with pytest.raises(BusinessRuleViolation):
            PlanningService(db, bus).create_trays_for_plan(plan.id, ["T-1"])

    def test_trays_allocated_by_contribution(self, db, bus, sunflower, order_factory, today, past):
        """Test: Trays werden in Beitragsreihenfolge den Bestellungen zugeordnet"""
        first = order_factory([(sunflower, 200)])   # 2 Trays
        second = order_factory([(sunflower, 400)])  # 3 Trays
        service = PlanningService(db, bus)
        plan = service.generate_plans_for_order(first, today=today).plans[0]
        service.generate_plans_for_order(second, today=today)
        service.approve_plan(plan.id, "anna")

        batch = service.create_trays_for_plan(plan.id, ["T-1", "T-2", "T-3", "T-4", "T-5"], started_at=past)

        assert batch.production_plan_id == plan.id
        assert [t.order_id for t in batch.trays] == [first.id] * 2 + [second.id] * 3
        assert all(t.current_stage == CropStage.GERMINATION for t in batch.trays)
        assert first.status == OrderStatus.IN_PRODUKTION
        assert second.status == OrderStatus.IN_PRODUKTION


class TestUpdatePlans:
    """Tests für update_plans_for_order"""

    def test_quantity_change_recalculates(self, db, bus, sunflower, order_factory, today):
        """Test: Geänderte Menge wird in den Plan übernommen"""
        order = order_factory([(sunflower, 1000)])
        service = PlanningService(db, bus)
        plan = service.generate_plans_for_order(order, today=today).plans[0]

        order.lines[0].quantity = Decimal("2000")
        result = service.update_plans_for_order(order, today=today)

        assert result.success is True
        assert result.plans[0].id == plan.id
        assert plan.trays_needed == 11
        assert plan.aggregation_history[-1]["action"] == "update"
        assert plan.aggregation_history[-1]["trays_added"] == 5

    def test_delivery_date_change_moves_contribution(self, db, bus, sunflower, order_factory, today):
        """Test: Neues Lieferdatum storniert den alten Plan und legt einen neuen an"""
        order = order_factory([(sunflower, 1000)], delivery_date=today + timedelta(days=30))
        service = PlanningService(db, bus)
        old_plan = service.generate_plans_for_order(order, today=today).plans[0]

        order.delivery_date = today + timedelta(days=35)
        result = service.update_plans_for_order(order, today=today)

        assert old_plan.status == PlanStatus.CANCELLED
        assert old_plan.trays_needed == 6
        new_plan = result.plans[0]
        assert new_plan.id != old_plan.id
        assert new_plan.harvest_date == today + timedelta(days=34)
        assert new_plan.status == PlanStatus.DRAFT

    def test_removed_variety_leaves_plan(self, db, bus, sunflower, pea, order_factory, today):
        """Test: Entfernte Sorte wird aus ihrem Plan ausgetragen"""
        order = order_factory([(sunflower, 1000), (pea, 900)])
        service = PlanningService(db, bus)
        plans = {p.seed_id: p for p in service.generate_plans_for_order(order, today=today).plans}

        order.lines.remove(order.lines[1])
        db.flush()
        service.update_plans_for_order(order, today=today)

        assert plans[pea.id].status == PlanStatus.CANCELLED
        assert plans[sunflower.id].status == PlanStatus.DRAFT

    def test_existing_trays_require_review(self, db, bus, sunflower, order_factory, today, past):
        """Test: Bei angelegten Trays bleibt der Plan unverändert"""
        order = order_factory([(sunflower, 1000)])
        service = PlanningService(db, bus)
        plan = service.generate_plans_for_order(order, today=today).plans[0]
        service.approve_plan(plan.id, "anna")
        service.create_trays_for_plan(plan.id, ["T-1", "T-2"], started_at=past)

        order.lines[0].quantity = Decimal("3000")
        result = service.update_plans_for_order(order, today=today)

        assert result.success is False
        assert result.issues[-1].issue == ISSUE_MANUAL_REVIEW
        assert [p.id for p in result.plans] == [plan.id]
        assert plan.trays_needed == 6

        events = _events(db, DomainEventType.PLAN_REVIEW_REQUIRED)
        assert len(events) == 1
        assert events[0].payload["plan_ids"] == [str(plan.id)]

    def test_blocked_variety_keeps_contribution(self, db, bus, sunflower, order_factory, today):
        """Test: Wird ein bestehender Bedarf unplanbar, bleibt der alte Beitrag erhalten"""
        order = order_factory([(sunflower, 1000)], delivery_date=today + timedelta(days=30))
        service = PlanningService(db, bus)
        plan = service.generate_plans_for_order(order, today=today).plans[0]

        # Gleiches Erntedatum, aber der Termin ist inzwischen verstrichen
        result = service.update_plans_for_order(order, today=plan.plant_by_date + timedelta(days=1))

        assert result.success is False
        assert plan.status == PlanStatus.DRAFT
        assert len(plan.active_contributions) == 1


class TestCancelOrder:
    """Tests für die Stornierung einer Bestellung"""

    def test_cancel_removes_contribution(self, db, bus, sunflower, order_factory, today):
        """Test: Stornierte Bestellung verlässt den gemeinsamen Plan"""
        first = order_factory([(sunflower, 1000)])
        second = order_factory([(sunflower, 200)])
        service = PlanningService(db, bus)
        plan = service.generate_plans_for_order(first, today=today).plans[0]
        service.generate_plans_for_order(second, today=today)
        assert plan.trays_needed == 8

        service.cancel_order(first)

        assert plan.status == PlanStatus.DRAFT
        assert plan.trays_needed == 2
        assert plan.order_id == second.id
        assert plan.calculation_details["removal_history"][0]["order_id"] == str(first.id)

    def test_cancel_last_order_cancels_plan(self, db, bus, sunflower, order_factory, today):
        """Test: Plan ohne Beiträge wird storniert, Mengen bleiben eingefroren"""
        order = order_factory([(sunflower, 1000)])
        service = PlanningService(db, bus)
        plan = service.generate_plans_for_order(order, today=today).plans[0]

        service.cancel_order(order, "Kunde storniert")

        assert plan.status == PlanStatus.CANCELLED
        assert plan.cancel_reason == "Kunde storniert"
        assert plan.trays_needed == 6
        assert db.execute(
            select(ProductionPlan).where(ProductionPlan.status.in_(PlanStatus.open_states()))
        ).scalars().all() == []
