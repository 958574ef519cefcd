"""
Lifecycle-Monitor für Trays.

Steuert die Stufen SOAKING -> GERMINATION -> BLACKOUT -> LIGHT -> HARVESTED
(CANCELLED aus jeder nicht geernteten Stufe). Trays einer Charge wechseln
gemeinsam die Stufe. Jeder Stufenwechsel veröffentlicht die zugehörigen
Domain Events direkt aus der Übergangsfunktion.
"""
import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.events import EventBus, event_bus, CropPlanted, AllCropsReady, OrderHarvested
from app.core.exceptions import BusinessRuleViolation, InvalidStageTransition, NotFoundError
from app.models.enums import CropStage, DomainEventType, PlanStatus, StageAction, STAGE_ORDER
from app.models.events import DomainEvent
from app.models.planning import ProductionPlan
from app.models.product import GrowPlan
from app.models.production import GrowBatch, Tray, StageTransitionLog
from app.services import crop_timing
from app.services.durations import DurationProfile

logger = logging.getLogger(__name__)

# Zeitstempel, die vor dem Eintritt in eine Stufe gesetzt sein müssen
REQUIRED_TIMESTAMPS: dict[CropStage, tuple[CropStage, ...]] = {
    CropStage.GERMINATION: (),
    CropStage.BLACKOUT: (CropStage.GERMINATION,),
    CropStage.LIGHT: (CropStage.GERMINATION,),
    CropStage.HARVESTED: (CropStage.LIGHT,),
}

# Toleranz für Uhrenabweichungen bei manuell gesetzten Zeitpunkten
FUTURE_TOLERANCE = timedelta(minutes=5)


def next_stage(stage: CropStage, profile: DurationProfile) -> Optional[CropStage]:
    """Nächste Stufe, übersprungene Stufen werden ausgelassen"""
    if stage.is_terminal:
        return None
    index = STAGE_ORDER.index(stage) + 1
    while index < len(STAGE_ORDER):
        candidate = STAGE_ORDER[index]
        if not profile.is_skipped(candidate):
            return candidate
        index += 1
    return None


class LifecycleMonitor:
    """Stufenwechsel, abgeleitete Zeiten und Events für Trays"""

    def __init__(self, db: Session, bus: EventBus = event_bus):
        self.db = db
        self.bus = bus
        self._profiles: dict[UUID, DurationProfile] = {}

    # ==================== LESEN ====================

    def profile_for(self, tray: Tray) -> DurationProfile:
        if tray.grow_plan_id not in self._profiles:
            grow_plan = tray.grow_plan or self.db.get(GrowPlan, tray.grow_plan_id)
            self._profiles[tray.grow_plan_id] = DurationProfile.from_grow_plan(grow_plan)
        return self._profiles[tray.grow_plan_id]

    def get_tray(self, tray_id: UUID) -> Tray:
        tray = self.db.get(Tray, tray_id)
        if not tray:
            raise NotFoundError("Tray nicht gefunden")
        return tray

    def timings(self, tray: Tray, now: Optional[datetime] = None) -> crop_timing.TrayTimings:
        return crop_timing.compute_timings(tray, self.profile_for(tray), now)

    def _batch_group(self, tray: Tray) -> list[Tray]:
        """Trays, die gemeinsam mit `tray` die Stufe wechseln"""
        if tray.batch_id is None:
            return [tray]
        batch = tray.batch or self.db.get(GrowBatch, tray.batch_id)
        return [t for t in batch.trays if t.current_stage == tray.current_stage]

    def _log(
        self,
        tray: Tray,
        action: StageAction,
        occurred_at: datetime,
        from_stage: Optional[CropStage] = None,
        to_stage: Optional[CropStage] = None,
        user_name: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        tray.stage_logs.append(StageTransitionLog(
            action=action,
            from_stage=from_stage,
            to_stage=to_stage,
            occurred_at=occurred_at,
            user_name=user_name,
            reason=reason,
        ))

    # ==================== ANLAGE ====================

    def check_tray_numbers(self, tray_numbers: list[str]) -> list[dict]:
        """Tray-Nummern müssen unter lebenden Trays eindeutig sein"""
        errors = []
        seen = set()
        for number in tray_numbers:
            if number in seen:
                errors.append({"tray_number": number, "error": f"Tray-Nummer {number} ist doppelt angegeben"})
            seen.add(number)

        in_use = self.db.execute(
            select(Tray.tray_number).where(
                Tray.tray_number.in_(list(seen)),
                Tray.current_stage.not_in([CropStage.HARVESTED, CropStage.CANCELLED]),
            )
        ).scalars().all()
        for number in sorted(in_use):
            errors.append({"tray_number": number, "error": f"Tray-Nummer {number} ist bereits belegt"})
        return errors

    def start_batch(
        self,
        grow_plan: GrowPlan,
        tray_numbers: list[str],
        started_at: Optional[datetime] = None,
        production_plan: Optional[ProductionPlan] = None,
        order_ids: Optional[list[Optional[UUID]]] = None,
        regal_position: Optional[str] = None,
        notes: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> GrowBatch:
        """
        Legt eine Charge mit einem Tray pro Tray-Nummer an.

        Die Start-Stufe ist SOAKING, bei Sorten ohne Einweichzeit direkt
        GERMINATION. `order_ids` ordnet die Trays in Reihenfolge den
        Bestellungen zu.
        """
        if not tray_numbers:
            raise BusinessRuleViolation("Mindestens eine Tray-Nummer erforderlich")
        errors = self.check_tray_numbers(tray_numbers)
        if errors:
            raise BusinessRuleViolation("Tray-Nummern ungültig", errors)

        started_at = started_at or datetime.utcnow()
        if started_at > datetime.utcnow() + FUTURE_TOLERANCE:
            raise InvalidStageTransition("Startzeitpunkt liegt in der Zukunft")

        profile = DurationProfile.from_grow_plan(grow_plan)
        stage = profile.initial_stage
        order_ids = order_ids or []

        batch = GrowBatch(
            grow_plan_id=grow_plan.id,
            production_plan_id=production_plan.id if production_plan else None,
            regal_position=regal_position,
            notizen=notes,
        )
        self.db.add(batch)

        for index, number in enumerate(tray_numbers):
            tray = Tray(
                tray_number=number,
                grow_plan_id=grow_plan.id,
                production_plan_id=production_plan.id if production_plan else None,
                order_id=order_ids[index] if index < len(order_ids) else None,
                current_stage=stage,
            )
            tray.set_stage_timestamp(stage, started_at)
            batch.trays.append(tray)
            self._log(tray, StageAction.START, started_at, to_stage=stage, user_name=user_name)

        self.db.flush()
        logger.info(f"Charge {batch.id} mit {len(tray_numbers)} Trays in {stage.value} angelegt")

        if stage == CropStage.GERMINATION:
            for tray in batch.trays:
                self._after_stage_change(tray, stage, started_at)
        return batch

    # ==================== STUFENWECHSEL ====================

    def _transition_errors(self, tray: Tray, at: datetime) -> tuple[Optional[CropStage], list[dict]]:
        profile = self.profile_for(tray)
        errors = []

        if tray.current_stage.is_terminal:
            errors.append({
                "tray_number": tray.tray_number,
                "error": f"Tray {tray.tray_number} ist bereits {tray.current_stage.value}",
            })
            return None, errors

        target = next_stage(tray.current_stage, profile)
        entered = tray.stage_timestamp(tray.current_stage)
        if entered is None:
            errors.append({
                "tray_number": tray.tray_number,
                "error": f"Tray {tray.tray_number}: Zeitpunkt für {tray.current_stage.value} fehlt",
            })
        for required in REQUIRED_TIMESTAMPS.get(target, ()):
            if tray.stage_timestamp(required) is None:
                errors.append({
                    "tray_number": tray.tray_number,
                    "error": f"Tray {tray.tray_number}: {target.value} erfordert Zeitpunkt für {required.value}",
                })
        if entered is not None and at < entered:
            errors.append({
                "tray_number": tray.tray_number,
                "error": f"Tray {tray.tray_number}: Zeitpunkt liegt vor Beginn von {tray.current_stage.value}",
            })
        if at > datetime.utcnow() + FUTURE_TOLERANCE:
            errors.append({"tray_number": tray.tray_number, "error": "Zeitpunkt liegt in der Zukunft"})
        return target, errors

    def _apply_transition(
        self,
        tray: Tray,
        target: CropStage,
        at: datetime,
        action: StageAction = StageAction.ADVANCE,
        user_name: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        previous = tray.current_stage
        tray.set_stage_timestamp(target, at)
        tray.current_stage = target
        self._log(tray, action, at, from_stage=previous, to_stage=target, user_name=user_name, reason=reason)

    def advance_stage(
        self,
        tray_id: UUID,
        at: Optional[datetime] = None,
        user_name: Optional[str] = None,
    ) -> CropStage:
        """Versetzt das Tray (und seine Charge) in die nächste Stufe"""
        tray = self.get_tray(tray_id)
        result = self._advance_trays(self._batch_group(tray), at, user_name)
        return result[tray.id]

    def advance_stage_bulk(
        self,
        tray_ids: Iterable[UUID],
        at: Optional[datetime] = None,
        user_name: Optional[str] = None,
    ) -> dict[UUID, CropStage]:
        """Mehrere Trays weiterschalten - entweder alle oder keines"""
        trays: dict[UUID, Tray] = {}
        missing = []
        for tray_id in tray_ids:
            tray = self.db.get(Tray, tray_id)
            if not tray:
                missing.append({"tray_id": str(tray_id), "error": "Tray nicht gefunden"})
                continue
            for member in self._batch_group(tray):
                trays[member.id] = member
        if missing:
            raise NotFoundError("Trays nicht gefunden", missing)
        return self._advance_trays(list(trays.values()), at, user_name)

    def _advance_trays(
        self,
        trays: list[Tray],
        at: Optional[datetime],
        user_name: Optional[str],
    ) -> dict[UUID, CropStage]:
        at = at or datetime.utcnow()
        targets: dict[UUID, CropStage] = {}
        errors: list[dict] = []
        for tray in trays:
            target, tray_errors = self._transition_errors(tray, at)
            errors.extend(tray_errors)
            if target is not None:
                targets[tray.id] = target

        if errors:
            for error in errors:
                logger.warning(f"Stufenwechsel abgelehnt: {error['error']}")
            raise InvalidStageTransition("Stufenwechsel nicht möglich", errors)

        for tray in trays:
            self._apply_transition(tray, targets[tray.id], at, user_name=user_name)
        self.db.flush()

        for tray in trays:
            self._after_stage_change(tray, targets[tray.id], at)
        return targets

    def revert_stage(
        self,
        tray_id: UUID,
        target: CropStage,
        user_name: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> CropStage:
        """
        Setzt Tray und Charge auf eine frühere Stufe zurück.
        Zeitpunkte späterer Stufen werden gelöscht.
        """
        tray = self.get_tray(tray_id)
        profile = self.profile_for(tray)
        current = tray.current_stage

        if current.is_terminal:
            raise InvalidStageTransition(f"Tray {tray.tray_number} ist bereits {current.value}")
        if target not in STAGE_ORDER or STAGE_ORDER.index(target) >= STAGE_ORDER.index(current):
            raise InvalidStageTransition(f"{target.value} liegt nicht vor {current.value}")
        if profile.is_skipped(target):
            raise InvalidStageTransition(f"{target.value} ist für diese Sorte deaktiviert")

        group = self._batch_group(tray)
        missing = [t.tray_number for t in group if t.stage_timestamp(target) is None]
        if missing:
            raise InvalidStageTransition(
                f"Zeitpunkt für {target.value} fehlt",
                [{"tray_number": n, "error": f"Tray {n}: Zeitpunkt für {target.value} fehlt"} for n in missing],
            )

        now = datetime.utcnow()
        later = STAGE_ORDER[STAGE_ORDER.index(target) + 1:]
        for member in group:
            for stage in later:
                member.set_stage_timestamp(stage, None)
            member.ready_flagged_at = None
            member.current_stage = target
            self._log(member, StageAction.REVERT, now, from_stage=current, to_stage=target,
                      user_name=user_name, reason=reason)

        self.db.flush()
        logger.info(f"Tray {tray.tray_number}: {current.value} -> {target.value} zurückgesetzt")
        return target

    def cancel_tray(
        self,
        tray_id: UUID,
        reason: Optional[str] = None,
        at: Optional[datetime] = None,
        user_name: Optional[str] = None,
    ) -> Tray:
        """Verwirft ein einzelnes Tray"""
        tray = self.get_tray(tray_id)
        if tray.current_stage.is_terminal:
            raise InvalidStageTransition(f"Tray {tray.tray_number} ist bereits {tray.current_stage.value}")

        at = at or datetime.utcnow()
        previous = tray.current_stage
        tray.current_stage = CropStage.CANCELLED
        tray.cancelled_at = at
        self._log(tray, StageAction.CANCEL, at, from_stage=previous, to_stage=CropStage.CANCELLED,
                  user_name=user_name, reason=reason)
        self.db.flush()
        logger.info(f"Tray {tray.tray_number} verworfen: {reason or '-'}")

        # Verbleibende Trays der Bestellung können jetzt vollständig sein
        if tray.order_id:
            self._check_order_ready(tray.order_id, at)
            self._check_order_harvested(tray.order_id, at)
        if tray.production_plan_id:
            self._check_plan_completed(tray.production_plan_id, at)
        return tray

    def shift_planting(
        self,
        tray_id: UUID,
        new_start: datetime,
        user_name: Optional[str] = None,
    ) -> timedelta:
        """
        Verschiebt den Start (Einweichen bzw. Aussaat) von Tray und Charge.
        Alle erfassten Stufen-Zeitpunkte werden um dasselbe Delta verschoben.
        """
        tray = self.get_tray(tray_id)
        if tray.current_stage.is_terminal:
            raise InvalidStageTransition(f"Tray {tray.tray_number} ist bereits {tray.current_stage.value}")
        recorded = tray.recorded_stage_timestamps
        if not recorded:
            raise InvalidStageTransition(f"Tray {tray.tray_number} hat keinen Startzeitpunkt")

        delta = new_start - recorded[0][1]
        group = self._batch_group(tray)
        latest = max(ts for member in group for _, ts in member.recorded_stage_timestamps)
        if latest + delta > datetime.utcnow() + FUTURE_TOLERANCE:
            raise InvalidStageTransition("Verschobene Zeitpunkte lägen in der Zukunft")

        now = datetime.utcnow()
        for member in group:
            for stage, ts in member.recorded_stage_timestamps:
                member.set_stage_timestamp(stage, ts + delta)
            self._log(member, StageAction.SHIFT, now, user_name=user_name,
                      reason=f"Start um {crop_timing.format_duration(abs(delta))} verschoben")
        self.db.flush()
        return delta

    def flag_ready(self, tray_id: UUID, at: Optional[datetime] = None) -> Tray:
        """Markiert ein Tray in der Lichtphase manuell als erntereif"""
        tray = self.get_tray(tray_id)
        if tray.current_stage != CropStage.LIGHT:
            raise InvalidStageTransition(f"Tray {tray.tray_number} ist nicht in der Lichtphase")
        at = at or datetime.utcnow()
        tray.ready_flagged_at = at
        self.db.flush()
        if tray.order_id:
            self._check_order_ready(tray.order_id, at)
        return tray

    # ==================== BEWÄSSERUNG ====================

    def toggle_watering(self, tray_id: UUID, at: Optional[datetime] = None) -> bool:
        """Schaltet die Bewässerungspause um, gibt den neuen Zustand zurück"""
        tray = self.get_tray(tray_id)
        if tray.watering_suspended_at is None:
            tray.watering_suspended_at = at or datetime.utcnow()
        else:
            tray.watering_suspended_at = None
        self.db.flush()
        return tray.is_watering_suspended

    def _load_trays(self, tray_ids: Iterable[UUID]) -> list[Tray]:
        ids = list(dict.fromkeys(tray_ids))
        trays = self.db.execute(select(Tray).where(Tray.id.in_(ids))).scalars().all()
        found = {t.id for t in trays}
        missing = [{"tray_id": str(i), "error": "Tray nicht gefunden"} for i in ids if i not in found]
        if missing:
            raise NotFoundError("Trays nicht gefunden", missing)
        return list(trays)

    def suspend_watering_bulk(self, tray_ids: Iterable[UUID], at: Optional[datetime] = None) -> int:
        at = at or datetime.utcnow()
        changed = 0
        for tray in self._load_trays(tray_ids):
            if tray.watering_suspended_at is None and not tray.current_stage.is_terminal:
                tray.watering_suspended_at = at
                changed += 1
        self.db.flush()
        return changed

    def resume_watering_bulk(self, tray_ids: Iterable[UUID]) -> int:
        changed = 0
        for tray in self._load_trays(tray_ids):
            if tray.watering_suspended_at is not None:
                tray.watering_suspended_at = None
                changed += 1
        self.db.flush()
        return changed

    # ==================== ERNTE ====================

    def mark_harvested(self, tray: Tray, at: datetime, user_name: Optional[str] = None) -> None:
        """Schließt ein Tray nach vollständiger Ernte ab"""
        if tray.current_stage.is_terminal:
            raise InvalidStageTransition(f"Tray {tray.tray_number} ist bereits {tray.current_stage.value}")
        latest = max((ts for _, ts in tray.recorded_stage_timestamps), default=at)
        self._apply_transition(tray, CropStage.HARVESTED, max(at, latest),
                               action=StageAction.HARVEST, user_name=user_name)
        self.db.flush()
        self._after_stage_change(tray, CropStage.HARVESTED, at)

    def log_partial_harvest(self, tray: Tray, percentage, weight, at: datetime, user_name: Optional[str] = None) -> None:
        self._log(tray, StageAction.PARTIAL_HARVEST, at, from_stage=tray.current_stage,
                  to_stage=tray.current_stage, user_name=user_name,
                  reason=f"Teilernte {percentage}% ({weight} g)")
        logger.info(f"Teilernte Tray {tray.tray_number}: {percentage}%")

    def restore_after_harvest_correction(self, tray: Tray, stage: CropStage, user_name: Optional[str] = None) -> None:
        """Nimmt eine Ernte zurück, das Tray kehrt in seine vorherige Stufe zurück"""
        now = datetime.utcnow()
        tray.harvested_at = None
        tray.current_stage = stage
        self._log(tray, StageAction.HARVEST_CORRECTION, now, from_stage=CropStage.HARVESTED,
                  to_stage=stage, user_name=user_name, reason="Ernte korrigiert")

        plan = tray.production_plan
        if plan is not None and plan.status == PlanStatus.COMPLETED:
            clash = self.db.execute(
                select(ProductionPlan.id).where(
                    ProductionPlan.seed_id == plan.seed_id,
                    ProductionPlan.harvest_date == plan.harvest_date,
                    ProductionPlan.status.in_(PlanStatus.open_states()),
                )
            ).first()
            if clash is None:
                plan.status = PlanStatus.ACTIVE
                plan.completed_at = None
        self.db.flush()

    # ==================== EVENTS ====================

    def _after_stage_change(self, tray: Tray, stage: CropStage, at: datetime) -> None:
        if stage == CropStage.GERMINATION and tray.order_id:
            self.bus.publish(self.db, CropPlanted(order_id=tray.order_id, planted_tray_id=tray.id))
        elif stage == CropStage.LIGHT and tray.order_id:
            self._check_order_ready(tray.order_id, at)
        elif stage == CropStage.HARVESTED:
            if tray.order_id:
                self._check_order_harvested(tray.order_id, at)
            if tray.production_plan_id:
                self._check_plan_completed(tray.production_plan_id, at)

    def _order_trays(self, order_id: UUID) -> list[Tray]:
        return list(self.db.execute(
            select(Tray).where(Tray.order_id == order_id, Tray.current_stage != CropStage.CANCELLED)
        ).scalars().all())

    def _already_emitted(self, event_type: DomainEventType, order_id: UUID, since: datetime) -> bool:
        return self.db.execute(
            select(DomainEvent.id).where(
                DomainEvent.event_type == event_type,
                DomainEvent.order_id == order_id,
                DomainEvent.occurred_at >= since,
            )
        ).first() is not None

    def _check_order_ready(self, order_id: UUID, now: datetime) -> bool:
        """AllCropsReady, sobald alle lebenden Trays der Bestellung erntereif sind"""
        trays = self._order_trays(order_id)
        live = [t for t in trays if t.current_stage != CropStage.HARVESTED]
        if not live:
            return False
        if not all(crop_timing.is_ready_to_harvest(t, self.profile_for(t), now) for t in live):
            return False

        # Bereitschaft beginnt mit der letzten Lichtphase bzw. Markierung
        since = max(max(filter(None, (t.light_at, t.ready_flagged_at))) for t in live)
        if self._already_emitted(DomainEventType.ALL_CROPS_READY, order_id, since):
            return False
        self.bus.publish(self.db, AllCropsReady(order_id=order_id), occurred_at=max(now, since))
        return True

    def _check_order_harvested(self, order_id: UUID, now: datetime) -> bool:
        trays = self._order_trays(order_id)
        if not trays or any(t.current_stage != CropStage.HARVESTED for t in trays):
            return False
        since = max(t.harvested_at for t in trays)
        if self._already_emitted(DomainEventType.ORDER_HARVESTED, order_id, since):
            return False
        self.bus.publish(self.db, OrderHarvested(order_id=order_id), occurred_at=max(now, since))
        return True

    def _check_plan_completed(self, plan_id: UUID, now: datetime) -> None:
        plan = self.db.get(ProductionPlan, plan_id)
        if plan is None or plan.status != PlanStatus.ACTIVE:
            return
        trays = [t for t in plan.trays if t.current_stage != CropStage.CANCELLED]
        if trays and all(t.current_stage == CropStage.HARVESTED for t in trays):
            plan.status = PlanStatus.COMPLETED
            plan.completed_at = now
            plan.append_details_entry("status_history", {
                "status": PlanStatus.COMPLETED.value,
                "timestamp": now.isoformat(),
            })
            logger.info(f"Produktionsplan {plan.id} abgeschlossen")

    def check_readiness(self, now: Optional[datetime] = None) -> list[UUID]:
        """Zeitgesteuerte Prüfung: Bestellungen, deren Trays durch Zeitablauf erntereif wurden"""
        now = now or datetime.utcnow()
        order_ids = self.db.execute(
            select(Tray.order_id)
            .where(Tray.current_stage == CropStage.LIGHT, Tray.order_id.is_not(None))
            .distinct()
        ).scalars().all()

        emitted = []
        for order_id in order_ids:
            if self._check_order_ready(order_id, now):
                emitted.append(order_id)
        self.db.flush()
        return emitted
