"""
Ernte-Abgleich - erfasst Ernten und überträgt sie auf die Trays.

Validierung sammelt alle Fehler, bevor etwas geändert wird:
1. jedes Tray existiert und gehört zur angegebenen Sorte
2. kein Tray ist bereits geerntet oder verworfen
3. Gewicht und Prozentsatz sind beide 0 oder beide größer 0

Trays mit >= 100% werden abgeschlossen, Teilernten nur protokolliert.
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.events import EventBus, event_bus
from app.core.exceptions import BusinessRuleViolation, NotFoundError, ValidationFailed
from app.models.enums import CropStage
from app.models.production import Harvest, HarvestLine, Tray
from app.schemas.harvest import HarvestSubmission, HarvestLineInput
from app.services.lifecycle import LifecycleMonitor

logger = logging.getLogger(__name__)


def harvested_at(harvest_date: date, now: datetime) -> datetime:
    """Erntezeitpunkt: Datum der Ernte mit aktueller Uhrzeit"""
    return datetime.combine(harvest_date, now.time())


class HarvestService:
    """Service für Ernten"""

    def __init__(self, db: Session, bus: EventBus = event_bus):
        self.db = db
        self.lifecycle = LifecycleMonitor(db, bus)

    def get_harvest(self, harvest_id: UUID) -> Harvest:
        harvest = self.db.get(Harvest, harvest_id)
        if not harvest:
            raise NotFoundError("Ernte nicht gefunden")
        return harvest

    @staticmethod
    def parse(data: Union[HarvestSubmission, dict]) -> HarvestSubmission:
        """Eingabe prüfen, alle Formatfehler werden gemeinsam gemeldet"""
        if isinstance(data, HarvestSubmission):
            return data
        try:
            return HarvestSubmission.model_validate(data)
        except ValidationError as e:
            errors = [
                {"field": ".".join(str(p) for p in err["loc"]), "error": err["msg"]}
                for err in e.errors()
            ]
            raise ValidationFailed("Ungültige Ernte-Eingabe", errors)

    # ==================== VALIDIERUNG ====================

    def validate(self, submission: HarvestSubmission, harvest: Optional[Harvest] = None) -> dict[UUID, Tray]:
        """
        Prüft die Ernte gegen Trays und Sorte.

        Bei Korrekturen (`harvest` gesetzt) dürfen Trays, die diese Ernte
        selbst abgeschlossen hat, erneut enthalten sein.
        """
        own_completed = set()
        if harvest is not None:
            own_completed = {
                line.tray_id for line in harvest.lines
                if line.is_complete and line.tray and line.tray.current_stage == CropStage.HARVESTED
            }

        trays: dict[UUID, Tray] = {}
        ownership_errors = []
        state_errors = []
        pairing_errors = []

        seen = set()
        for index, line in enumerate(submission.lines):
            if line.tray_id in seen:
                ownership_errors.append({
                    "line": index, "tray_id": str(line.tray_id),
                    "error": "Tray ist mehrfach in der Ernte enthalten",
                })
                continue
            seen.add(line.tray_id)

            tray = self.db.get(Tray, line.tray_id)
            if tray is None:
                ownership_errors.append({
                    "line": index, "tray_id": str(line.tray_id), "error": "Tray nicht gefunden",
                })
            elif tray.grow_plan is None or tray.grow_plan.seed_id != submission.seed_id:
                ownership_errors.append({
                    "line": index, "tray_id": str(line.tray_id), "tray_number": tray.tray_number,
                    "error": f"Tray {tray.tray_number} gehört nicht zur geernteten Sorte",
                })
            else:
                trays[tray.id] = tray
                if tray.current_stage.is_terminal and tray.id not in own_completed:
                    label = "geerntet" if tray.current_stage == CropStage.HARVESTED else "verworfen"
                    state_errors.append({
                        "line": index, "tray_number": tray.tray_number,
                        "error": f"Tray {tray.tray_number} ist bereits {label}",
                    })

            if (line.percentage_harvested == 0) != (line.harvested_weight_grams == 0):
                pairing_errors.append({
                    "line": index, "tray_id": str(line.tray_id),
                    "error": "Gewicht und Prozentsatz müssen beide 0 oder beide größer 0 sein",
                })

        errors = ownership_errors + state_errors + pairing_errors
        if errors:
            logger.warning(f"Ernte abgelehnt: {len(errors)} Fehler")
            raise BusinessRuleViolation("Ernte ist ungültig", errors)
        return trays

    # ==================== VERARBEITUNG ====================

    def _attach_lines(
        self,
        harvest: Harvest,
        lines: list[HarvestLineInput],
        trays: dict[UUID, Tray],
        at: datetime,
        user_name: Optional[str],
    ) -> None:
        for line in lines:
            tray = trays[line.tray_id]
            harvest.lines.append(HarvestLine(
                tray_id=tray.id,
                harvested_weight_grams=line.harvested_weight_grams,
                percentage_harvested=line.percentage_harvested,
                notes=line.notes,
                stage_before=tray.current_stage,
            ))
            if line.percentage_harvested >= 100:
                self.lifecycle.mark_harvested(tray, at, user_name)
            else:
                self.lifecycle.log_partial_harvest(
                    tray, line.percentage_harvested, line.harvested_weight_grams, at, user_name
                )

    def submit_harvest(
        self,
        data: Union[HarvestSubmission, dict],
        user_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Harvest:
        """Erfasst eine neue Ernte mit allen Positionen"""
        submission = self.parse(data)
        trays = self.validate(submission)

        now = now or datetime.utcnow()
        user_name = user_name or submission.user_name
        harvest = Harvest(
            seed_id=submission.seed_id,
            harvest_date=submission.harvest_date,
            user_name=user_name,
            notes=submission.notes,
        )
        self.db.add(harvest)

        self._attach_lines(harvest, submission.lines, trays, harvested_at(submission.harvest_date, now), user_name)
        harvest.recalculate_totals()
        self.db.flush()

        logger.info(
            f"Ernte {harvest.id}: {harvest.tray_count} Trays, {harvest.total_weight_grams} g"
        )
        return harvest

    def update_harvest(
        self,
        harvest_id: UUID,
        data: Union[HarvestSubmission, dict],
        user_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Harvest:
        """
        Korrigiert eine Ernte: alle Positionen werden ersetzt und Trays
        wie bei der Erfassung neu bewertet.
        """
        harvest = self.get_harvest(harvest_id)
        submission = self.parse(data)
        trays = self.validate(submission, harvest)

        now = now or datetime.utcnow()
        user_name = user_name or submission.user_name

        # Von dieser Ernte abgeschlossene Trays zurücknehmen
        for line in harvest.lines:
            tray = line.tray
            if line.is_complete and tray is not None and tray.current_stage == CropStage.HARVESTED:
                self.lifecycle.restore_after_harvest_correction(
                    tray, line.stage_before or CropStage.LIGHT, user_name
                )
        harvest.lines.clear()
        self.db.flush()

        harvest.seed_id = submission.seed_id
        harvest.harvest_date = submission.harvest_date
        harvest.notes = submission.notes
        harvest.user_name = user_name

        self._attach_lines(harvest, submission.lines, trays, harvested_at(submission.harvest_date, now), user_name)
        harvest.recalculate_totals()
        self.db.flush()

        logger.info(f"Ernte {harvest.id} korrigiert: {harvest.tray_count} Trays")
        return harvest
