"""
Tests für die Bündelung von Bestellungen in Produktionsplänen
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select, func, text

from app.core.exceptions import TransientConflict
from app.models.enums import PlanStatus
from app.models.planning import ProductionPlan
from app.services.aggregation import AggregationService, PlanProposal
from app.services.planning import PlanningService


def _open_plans(db):
    return db.execute(
        select(ProductionPlan).where(ProductionPlan.status.in_(PlanStatus.open_states()))
    ).scalars().all()


class TestAggregation:
    """Tests für find-or-create je Sorte und Erntedatum"""

    def test_orders_share_plan(self, db, bus, sunflower, order_factory, today):
        """Test: Zwei Bestellungen für gleiche Sorte und Erntedatum teilen sich einen Plan"""
        first = order_factory([(sunflower, 1000)])
        second = order_factory([(sunflower, 500)])
        service = PlanningService(db, bus)

        plan_a = service.generate_plans_for_order(first, today=today).plans[0]
        plan_b = service.generate_plans_for_order(second, today=today).plans[0]

        assert plan_a.id == plan_b.id
        assert len(_open_plans(db)) == 1
        # 6 + 3 Trays, jeweils einzeln gerundet
        assert plan_a.trays_needed == 9
        assert plan_a.grams_needed == Decimal("1500.00")
        assert plan_a.order_id == first.id
        assert sorted(plan_a.contributing_order_ids, key=str) == sorted([first.id, second.id], key=str)

    def test_aggregation_history(self, db, bus, sunflower, order_factory, today):
        """Test: Jede Bündelung wird protokolliert"""
        first = order_factory([(sunflower, 1000)])
        second = order_factory([(sunflower, 500)])
        service = PlanningService(db, bus)
        plan = service.generate_plans_for_order(first, today=today).plans[0]
        service.generate_plans_for_order(second, today=today)

        history = plan.aggregation_history
        assert [h["action"] for h in history] == ["create", "merge"]
        assert history[1]["order_id"] == str(second.id)
        assert history[1]["trays_added"] == 3
        assert history[1]["grams_added"] == "500.00"

    def test_quantities_equal_active_contributions(self, db, bus, sunflower, order_factory, today):
        """Test: Plan-Mengen sind immer die Summe der aktiven Beiträge"""
        orders = [order_factory([(sunflower, qty)]) for qty in (200, 400, 1000)]
        service = PlanningService(db, bus)
        for order in orders:
            service.generate_plans_for_order(order, today=today)
        service.cancel_order(orders[1])

        plan = _open_plans(db)[0]
        active = plan.active_contributions
        assert len(active) == 2
        assert plan.trays_needed == sum(c.trays for c in active)
        assert plan.grams_needed == sum(Decimal(c.grams) for c in active)

        removed = [c for c in plan.contributions if not c.is_active]
        assert len(removed) == 1
        assert removed[0].removed_at is not None
        assert removed[0].removal_reason

    def test_different_dates_get_separate_plans(self, db, bus, sunflower, order_factory, today):
        """Test: Unterschiedliche Erntedaten ergeben getrennte Pläne"""
        first = order_factory([(sunflower, 1000)], delivery_date=today + timedelta(days=30))
        second = order_factory([(sunflower, 1000)], delivery_date=today + timedelta(days=31))
        service = PlanningService(db, bus)

        a = service.generate_plans_for_order(first, today=today).plans[0]
        b = service.generate_plans_for_order(second, today=today).plans[0]

        assert a.id != b.id
        assert len(_open_plans(db)) == 2

    def test_active_plan_is_reused(self, db, bus, sunflower, order_factory, today):
        """Test: Auch freigegebene Pläne nehmen weitere Bestellungen auf"""
        first = order_factory([(sunflower, 1000)])
        service = PlanningService(db, bus)
        plan = service.generate_plans_for_order(first, today=today).plans[0]
        service.approve_plan(plan.id, "anna")

        second = order_factory([(sunflower, 200)])
        merged = service.generate_plans_for_order(second, today=today).plans[0]

        assert merged.id == plan.id
        assert merged.status == PlanStatus.ACTIVE
        assert merged.trays_needed == 8

    def test_cancelled_plan_is_not_reused(self, db, bus, sunflower, order_factory, today):
        """Test: Nach Stornierung wird ein neuer Plan angelegt"""
        first = order_factory([(sunflower, 1000)])
        service = PlanningService(db, bus)
        old = service.generate_plans_for_order(first, today=today).plans[0]
        service.cancel_plan(old.id, "Fehlplanung")

        second = order_factory([(sunflower, 200)])
        new = service.generate_plans_for_order(second, today=today).plans[0]

        assert new.id != old.id
        assert new.trays_needed == 2
        assert old.trays_needed == 6
        assert db.execute(select(func.count(ProductionPlan.id))).scalar() == 2

    def test_attach_directly(self, db, bus, sunflower, order_factory, today):
        """Test: attach legt bei fehlendem Plan einen Entwurf mit Primärbestellung an"""
        order = order_factory([(sunflower, 1000)])
        grow_plan = sunflower.grow_plans[0]
        proposal = PlanProposal(
            seed_id=sunflower.id,
            grow_plan_id=grow_plan.id,
            harvest_date=today + timedelta(days=15),
            plant_by_date=today + timedelta(days=5),
            seed_soak_date=None,
            trays_needed=4,
            grams_needed=Decimal("700.00"),
            calculation_details={"order_number": order.order_number},
        )

        plan = AggregationService(db, bus).attach(order, proposal)

        assert plan.status == PlanStatus.DRAFT
        assert plan.order_id == order.id
        assert plan.trays_needed == 4
        assert plan.calculation_details["order_number"] == order.order_number
        assert plan.aggregation_history[0]["action"] == "create"
        assert len(plan.contributions) == 1


def _proposal(seed, harvest_date, trays, grams):
    grow_plan = seed.grow_plans[0]
    return PlanProposal(
        seed_id=seed.id,
        grow_plan_id=grow_plan.id,
        harvest_date=harvest_date,
        plant_by_date=harvest_date - timedelta(days=10),
        seed_soak_date=None,
        trays_needed=trays,
        grams_needed=Decimal(grams),
        calculation_details={},
    )


class TestAggregationTotals:
    """Tests für die Summen über mehrere Bestellungen"""

    @pytest.mark.parametrize("quantities", [(200, 400, 1000), (1000, 400, 200)])
    def test_three_orders_sum_up(self, db, bus, sunflower, order_factory, today, quantities):
        """Test: Summe unabhängig von der Reihenfolge der Bestellungen"""
        service = PlanningService(db, bus)
        for qty in quantities:
            service.generate_plans_for_order(order_factory([(sunflower, qty)]), today=today)

        plans = _open_plans(db)
        assert len(plans) == 1
        plan = plans[0]
        assert plan.grams_needed == Decimal("1600.00")
        # 2 + 3 + 6 Trays
        assert plan.trays_needed == 11
        assert len(plan.active_contributions) == 3


class TestConcurrentCreation:
    """Tests für den Fall, dass ein paralleler Request den Plan zuerst anlegt"""

    def test_unique_violation_is_merged(self, db, bus, sunflower, order_factory, today, monkeypatch):
        """Test: Schlägt das Anlegen am Unique-Index fehl, wird in den bestehenden Plan gebündelt"""
        harvest_date = today + timedelta(days=20)
        first = order_factory([(sunflower, 1000)])
        second = order_factory([(sunflower, 500)])
        service = AggregationService(db, bus)
        existing = service.attach(first, _proposal(sunflower, harvest_date, 6, "1000.00"))

        real_find = service.find_open_plans
        calls = []

        def find_stale_first(seed_id, harvest_date):
            calls.append(seed_id)
            if len(calls) == 1:
                return []
            return real_find(seed_id, harvest_date)

        monkeypatch.setattr(service, "find_open_plans", find_stale_first)
        plan = service.attach(second, _proposal(sunflower, harvest_date, 3, "500.00"))

        assert len(calls) == 2
        assert plan.id == existing.id
        assert plan.grams_needed == Decimal("1500.00")
        assert plan.trays_needed == 9
        assert len(_open_plans(db)) == 1
        assert db.execute(select(func.count(ProductionPlan.id))).scalar() == 1

    def test_retry_without_plan_raises_transient_conflict(self, db, bus, sunflower, order_factory, today, monkeypatch):
        """Test: Findet auch der zweite Versuch keinen Plan, wird TransientConflict ausgelöst"""
        harvest_date = today + timedelta(days=20)
        first = order_factory([(sunflower, 1000)])
        second = order_factory([(sunflower, 500)])
        service = AggregationService(db, bus)
        existing = service.attach(first, _proposal(sunflower, harvest_date, 6, "1000.00"))

        monkeypatch.setattr(service, "find_open_plans", lambda seed_id, harvest_date: [])
        with pytest.raises(TransientConflict):
            service.attach(second, _proposal(sunflower, harvest_date, 3, "500.00"))

        # Bestehender Plan bleibt unverändert
        assert existing.trays_needed == 6
        assert existing.grams_needed == Decimal("1000.00")
        assert len(existing.active_contributions) == 1


class TestDuplicatePlans:
    """Tests für doppelte offene Pläne (z.B. aus Altdaten)"""

    def test_duplicates_absorbed_into_oldest(self, db, bus, sunflower, order_factory, today, monkeypatch):
        """Test: Ältester Plan übernimmt die Beiträge, Duplikat wird mit Grund storniert"""
        db.execute(text("DROP INDEX uq_production_plans_open_seed_harvest"))
        harvest_date = today + timedelta(days=20)
        t0 = datetime(2026, 1, 5, 8, 0)
        orders = [order_factory([(sunflower, qty)]) for qty in (200, 400, 1000)]
        service = AggregationService(db, bus)

        oldest = service.attach(orders[0], _proposal(sunflower, harvest_date, 2, "200.00"), now=t0)
        with monkeypatch.context() as patch:
            patch.setattr(service, "find_open_plans", lambda seed_id, harvest_date: [])
            duplicate = service.attach(
                orders[1], _proposal(sunflower, harvest_date, 3, "400.00"), now=t0 + timedelta(hours=1)
            )
        assert duplicate.id != oldest.id
        assert len(_open_plans(db)) == 2

        host = service.attach(orders[2], _proposal(sunflower, harvest_date, 6, "1000.00"), now=t0 + timedelta(hours=2))

        assert host.id == oldest.id
        assert host.grams_needed == Decimal("1600.00")
        assert host.trays_needed == 11
        assert sorted(host.contributing_order_ids, key=str) == sorted([o.id for o in orders], key=str)

        assert duplicate.status == PlanStatus.CANCELLED
        assert str(oldest.id) in duplicate.cancel_reason
        assert duplicate.active_contributions == []
        assert duplicate.contributions[0].removal_reason == duplicate.cancel_reason
        assert [p.id for p in _open_plans(db)] == [oldest.id]
