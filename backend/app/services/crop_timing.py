"""
Zeitberechnung für Trays.

Alle Werte werden beim Lesen aus den gespeicherten Stufen-Zeitpunkten und
dem Wachstumsprofil berechnet und nie gespeichert.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from app.models.enums import CropStage, STAGE_ORDER
from app.models.production import Tray
from app.services.durations import DurationProfile

ZERO = timedelta(0)

# Stufen, deren Dauer bis zur Ernte zählt
GROWING_STAGES = (CropStage.SOAKING, CropStage.GERMINATION, CropStage.BLACKOUT, CropStage.LIGHT)


@dataclass
class TrayTimings:
    """Abgeleitete Zeitfelder eines Trays"""
    stage_age: Optional[timedelta]
    time_to_next_stage: Optional[timedelta]
    ready_to_advance: bool
    ready_to_harvest: bool
    total_age: Optional[timedelta]
    expected_harvest_at: Optional[datetime]

    @property
    def stage_age_display(self) -> Optional[str]:
        return format_duration(self.stage_age)

    @property
    def time_to_next_stage_display(self) -> Optional[str]:
        return format_duration(self.time_to_next_stage)

    @property
    def total_age_display(self) -> Optional[str]:
        return format_duration(self.total_age)


def current_stage_entered_at(tray: Tray) -> Optional[datetime]:
    if tray.current_stage == CropStage.CANCELLED:
        return tray.cancelled_at
    return tray.stage_timestamp(tray.current_stage)


def stage_age(tray: Tray, now: datetime) -> Optional[timedelta]:
    entered = current_stage_entered_at(tray)
    if entered is None:
        return None
    return max(now - entered, ZERO)


def time_to_next_stage(tray: Tray, profile: DurationProfile, now: datetime) -> Optional[timedelta]:
    """Restzeit der aktuellen Stufe, nie negativ. Für geerntete Trays immer 0."""
    if tray.current_stage.is_terminal:
        return ZERO
    entered = current_stage_entered_at(tray)
    if entered is None:
        return None
    remaining = entered + profile.stage_duration(tray.current_stage) - now
    return max(remaining, ZERO)


def is_ready_to_advance(tray: Tray, profile: DurationProfile, now: datetime) -> bool:
    if tray.current_stage.is_terminal:
        return False
    return time_to_next_stage(tray, profile, now) == ZERO


def is_ready_to_harvest(tray: Tray, profile: DurationProfile, now: datetime) -> bool:
    """Lichtphase abgelaufen oder manuell als erntereif markiert"""
    if tray.current_stage != CropStage.LIGHT:
        return False
    if tray.ready_flagged_at is not None:
        return True
    return time_to_next_stage(tray, profile, now) == ZERO


def total_age(tray: Tray, now: datetime) -> Optional[timedelta]:
    recorded = tray.recorded_stage_timestamps
    if not recorded:
        return None
    end = tray.harvested_at or tray.cancelled_at or now
    return max(end - recorded[0][1], ZERO)


def expected_harvest_at(tray: Tray, profile: DurationProfile) -> Optional[datetime]:
    """
    Frühester erfasster Stufen-Zeitpunkt plus die Dauern aller Stufen ab
    dieser Stufe bis einschließlich Lichtphase.
    """
    recorded = [(s, ts) for s, ts in tray.recorded_stage_timestamps if s in GROWING_STAGES]
    if not recorded:
        return None
    first_stage, first_at = recorded[0]
    remaining = STAGE_ORDER[STAGE_ORDER.index(first_stage):STAGE_ORDER.index(CropStage.LIGHT) + 1]
    return first_at + sum((profile.stage_duration(s) for s in remaining), ZERO)


def compute_timings(tray: Tray, profile: DurationProfile, now: Optional[datetime] = None) -> TrayTimings:
    now = now or datetime.utcnow()
    return TrayTimings(
        stage_age=stage_age(tray, now),
        time_to_next_stage=time_to_next_stage(tray, profile, now),
        ready_to_advance=is_ready_to_advance(tray, profile, now),
        ready_to_harvest=is_ready_to_harvest(tray, profile, now),
        total_age=total_age(tray, now),
        expected_harvest_at=expected_harvest_at(tray, profile),
    )


def format_duration(value: Optional[timedelta]) -> Optional[str]:
    """Kompakte Anzeige: 45m, 3h 20m, 2d 4h, 1w 3d"""
    if value is None:
        return None
    minutes = int(value.total_seconds() // 60)
    if minutes < 60:
        return f"{minutes}m"

    hours, rest_minutes = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h {rest_minutes}m" if rest_minutes else f"{hours}h"

    days, rest_hours = divmod(hours, 24)
    if days < 7:
        return f"{days}d {rest_hours}h" if rest_hours else f"{days}d"

    weeks, rest_days = divmod(days, 7)
    return f"{weeks}w {rest_days}d" if rest_days else f"{weeks}w"
