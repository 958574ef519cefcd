"""
Tests für die Zustellung von Events aus der Outbox
"""
from datetime import datetime

from app.core.email import EmailService, ORDER_MILESTONE_TEMPLATE, PLAN_REVIEW_TEMPLATE
from app.core.events import AllCropsReady, CropPlanted, PlanReviewRequired
from app.services.notifications import MAX_ATTEMPTS, build_notification, dispatch_pending_events
from app.services.planning import PlanningService


class FakeSender:
    """Merkt sich alle Aufrufe statt E-Mails zu versenden"""

    def __init__(self, result=True):
        self.result = result
        self.calls = []

    def __call__(self, email_to, subject, template, data):
        self.calls.append((email_to, subject, template, data))
        return self.result


class TestDispatch:
    """Tests für dispatch_pending_events"""

    def test_sends_milestones(self, db, bus, sunflower, order_factory):
        order = order_factory([(sunflower, 400)], customer_name="Restaurant Zeit")
        event = bus.publish(db, AllCropsReady(order_id=order.id))
        send = FakeSender()

        result = dispatch_pending_events(db, send, now=datetime(2026, 3, 1, 9, 0))

        assert result == {"sent": 1, "skipped": 0, "failed": 0}
        email_to, subject, template, data = send.calls[0]
        assert order.order_number in subject
        assert template == ORDER_MILESTONE_TEMPLATE
        assert data["customer_name"] == "Restaurant Zeit"
        assert event.dispatched_at == datetime(2026, 3, 1, 9, 0)
        assert event.attempts == 1

    def test_crop_planted_is_skipped(self, db, bus, sunflower, order_factory):
        """Test: Für CropPlanted gibt es keine Nachricht, das Event gilt als zugestellt"""
        order = order_factory([(sunflower, 400)])
        event = bus.publish(db, CropPlanted(order_id=order.id))
        send = FakeSender()

        result = dispatch_pending_events(db, send)

        assert result["skipped"] == 1
        assert send.calls == []
        assert event.dispatched_at is not None

    def test_failure_is_retried(self, db, bus, sunflower, order_factory):
        """Test: Fehlgeschlagene Zustellung bleibt offen und wird erneut versucht"""
        order = order_factory([(sunflower, 400)])
        event = bus.publish(db, AllCropsReady(order_id=order.id))

        result = dispatch_pending_events(db, FakeSender(result=False))

        assert result["failed"] == 1
        assert event.dispatched_at is None
        assert event.last_error
        assert event.attempts == 1

        dispatch_pending_events(db, FakeSender())
        assert event.dispatched_at is not None
        assert event.last_error is None
        assert event.attempts == 2

    def test_gives_up_after_max_attempts(self, db, bus, sunflower, order_factory):
        order = order_factory([(sunflower, 400)])
        event = bus.publish(db, AllCropsReady(order_id=order.id))
        event.attempts = MAX_ATTEMPTS
        db.flush()
        send = FakeSender()

        result = dispatch_pending_events(db, send)

        assert result == {"sent": 0, "skipped": 0, "failed": 0}
        assert send.calls == []

    def test_already_dispatched_events_are_ignored(self, db, bus, sunflower, order_factory):
        order = order_factory([(sunflower, 400)])
        bus.publish(db, AllCropsReady(order_id=order.id))
        dispatch_pending_events(db, FakeSender())

        send = FakeSender()
        dispatch_pending_events(db, send)
        assert send.calls == []


class TestBuildNotification:
    """Tests für den Aufbau der Nachrichten"""

    def test_plan_review_lists_plans(self, db, bus, sunflower, order_factory, today):
        order = order_factory([(sunflower, 1000)])
        plan = PlanningService(db, bus).generate_plans_for_order(order, today=today).plans[0]
        event = bus.publish(db, PlanReviewRequired(
            order_id=order.id, plan_ids=(plan.id,), reason="Menge geändert"
        ))

        subject, template, data = build_notification(db, event)

        assert template == PLAN_REVIEW_TEMPLATE
        assert data["reason"] == "Menge geändert"
        assert data["plans"] == [{
            "variety": "Sonnenblume",
            "harvest_date": plan.harvest_date.strftime("%d.%m.%Y"),
            "trays_needed": 6,
        }]

    def test_render_milestone(self):
        html = EmailService().render(ORDER_MILESTONE_TEMPLATE, {
            "order_number": "BE-TEST-0001",
            "customer_name": "Café Grün",
            "milestone": "alle Trays sind erntereif",
            "delivery_date": "01.03.2026",
        })
        assert "BE-TEST-0001" in html
        assert "alle Trays sind erntereif" in html
        assert "01.03.2026" in html
