"""
Celery Tasks für den Anbau-Lebenszyklus
"""
import logging

from app.celery_app import celery_app
from app.core.email import email_service
from app.core.events import event_bus
from app.database import SessionLocal
from app.services.lifecycle import LifecycleMonitor
from app.services.notifications import dispatch_pending_events
from app.services.order_status import register_order_status_handlers

logger = logging.getLogger(__name__)

register_order_status_handlers(event_bus)


@celery_app.task(name="app.tasks.lifecycle_tasks.check_crop_readiness")
def check_crop_readiness():
    """
    Prüft, ob Bestellungen durch Zeitablauf erntereif geworden sind.
    Wird stündlich ausgeführt.
    """
    logger.info("Prüfe Erntereife")

    db = SessionLocal()
    try:
        order_ids = LifecycleMonitor(db, event_bus).check_readiness()
        db.commit()

        if order_ids:
            logger.info(f"{len(order_ids)} Bestellungen erntereif")

        return {
            "status": "success",
            "ready_orders": [str(order_id) for order_id in order_ids]
        }

    finally:
        db.close()


@celery_app.task(name="app.tasks.lifecycle_tasks.dispatch_domain_events")
def dispatch_domain_events():
    """
    Stellt offene Domain Events als E-Mail an die Produktionsleitung zu.
    Wird alle 5 Minuten ausgeführt.
    """
    db = SessionLocal()
    try:
        result = dispatch_pending_events(db, email_service.send_email)
        db.commit()

        if result["sent"] or result["failed"]:
            logger.info(
                f"Events zugestellt: {result['sent']}, fehlgeschlagen: {result['failed']}"
            )
        return {"status": "success", **result}

    finally:
        db.close()
