"""
Celery Tasks für die Produktionsplanung
"""
import logging
from datetime import date

from app.celery_app import celery_app
from app.config import get_settings
from app.core.email import email_service, OVERDUE_PLANS_TEMPLATE
from app.database import SessionLocal
from app.services.planning import PlanningService

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.planning_tasks.check_overdue_plans")
def check_overdue_plans():
    """
    Meldet Entwürfe, deren Aussaattermin überschritten oder knapp ist.
    Wird täglich um 6:00 ausgeführt.
    """
    logger.info("Prüfe nicht freigegebene Produktionspläne")

    settings = get_settings()
    db = SessionLocal()
    try:
        today = date.today()
        plans = PlanningService(db).list_overdue_plans(today)
        if not plans:
            return {"status": "success", "plans": 0}

        rows = []
        for plan in plans:
            overdue = plan.is_overdue(today)
            rows.append({
                "variety": plan.seed.name if plan.seed else str(plan.seed_id),
                "trays_needed": plan.trays_needed,
                "plant_by_date": plan.plant_by_date.strftime("%d.%m.%Y"),
                "overdue": overdue,
            })
            if overdue:
                logger.warning(
                    f"Produktionsplan {plan.id} nicht freigegeben, Aussaat bis {plan.plant_by_date} überschritten"
                )

        sent = email_service.send_email(
            settings.production_manager_email,
            f"{len(plans)} Produktionspläne warten auf Freigabe",
            OVERDUE_PLANS_TEMPLATE,
            {"plans": rows},
        )
        return {"status": "success", "plans": len(plans), "notified": sent}

    finally:
        db.close()
