"""
Tests für Wachstumsdauern und abgeleitete Tray-Zeiten
"""
import uuid
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from app.core.exceptions import NotFoundError
from app.models.enums import CropStage
from app.models.production import Tray
from app.services import crop_timing
from app.services.crop_timing import format_duration
from app.services.durations import DurationProfile, get_active_profile


def _profile(**kwargs):
    values = {
        "grow_plan_id": uuid.uuid4(),
        "seed_id": uuid.uuid4(),
        "seed_soak_hours": 8,
        "germination_days": 2,
        "blackout_days": 3,
        "light_days": 7,
        "days_to_maturity": None,
        "buffer_percentage": Decimal("10"),
        "yield_grams_per_unit": Decimal("300"),
    }
    values.update(kwargs)
    return DurationProfile(**values)


T0 = datetime(2026, 3, 1, 8, 0)


class TestDurationProfile:
    """Tests für DurationProfile"""

    def test_total_growing_days(self):
        assert _profile().total_growing_days == 12

    def test_days_to_maturity_only_without_stages(self):
        """Test: days_to_maturity greift nur, wenn keine Stufendauern gepflegt sind"""
        assert _profile(days_to_maturity=20).total_growing_days == 12
        profile = _profile(germination_days=0, blackout_days=0, light_days=0, days_to_maturity=9)
        assert profile.total_growing_days == 9

    def test_soak_days_round_up(self):
        """Test: Angefangene Einweichtage zählen voll"""
        assert _profile(seed_soak_hours=8).soak_days == 1
        assert _profile(seed_soak_hours=24).soak_days == 1
        assert _profile(seed_soak_hours=30).soak_days == 2
        assert _profile(seed_soak_hours=0).soak_days == 0

    def test_initial_stage(self):
        assert _profile().initial_stage == CropStage.SOAKING
        assert _profile(seed_soak_hours=0).initial_stage == CropStage.GERMINATION

    def test_skipped_stages(self):
        profile = _profile(seed_soak_hours=0, blackout_days=0)
        assert profile.is_skipped(CropStage.SOAKING)
        assert profile.is_skipped(CropStage.BLACKOUT)
        assert not profile.is_skipped(CropStage.LIGHT)

    def test_stage_duration(self):
        profile = _profile()
        assert profile.stage_duration(CropStage.SOAKING) == timedelta(hours=8)
        assert profile.stage_duration(CropStage.BLACKOUT) == timedelta(days=3)
        assert profile.stage_duration(CropStage.HARVESTED) == timedelta(0)

    def test_light_covers_days_to_maturity(self):
        """Test: Ohne Stufendauern umfasst die Lichtphase die ganze Gesamtdauer"""
        profile = _profile(
            seed_soak_hours=0, germination_days=0, blackout_days=0, light_days=0, days_to_maturity=10
        )
        assert profile.stage_duration(CropStage.LIGHT) == timedelta(days=10)
        assert profile.stage_duration(CropStage.GERMINATION) == timedelta(0)
        assert profile.is_skipped(CropStage.LIGHT) is False
        assert profile.total_growing_days == 10


class TestTrayTimings:
    """Tests für die beim Lesen berechneten Zeiten"""

    def test_stage_age_and_remaining(self):
        """Test: Alter der Stufe und Restzeit bis zum Wechsel"""
        tray = Tray(current_stage=CropStage.GERMINATION, soaking_at=T0, germination_at=T0 + timedelta(hours=8))
        now = T0 + timedelta(days=1, hours=8)

        timings = crop_timing.compute_timings(tray, _profile(), now)

        assert timings.stage_age == timedelta(days=1)
        assert timings.time_to_next_stage == timedelta(days=1)
        assert timings.ready_to_advance is False
        assert timings.total_age == timedelta(days=1, hours=8)

    def test_remaining_never_negative(self):
        """Test: Überschrittene Stufen haben Restzeit 0 und sind weiterschaltbar"""
        tray = Tray(current_stage=CropStage.GERMINATION, germination_at=T0)
        timings = crop_timing.compute_timings(tray, _profile(), T0 + timedelta(days=5))

        assert timings.time_to_next_stage == timedelta(0)
        assert timings.ready_to_advance is True

    def test_expected_harvest_from_soaking(self):
        """Test: Erwartete Ernte ab Einweichen über alle Stufen"""
        tray = Tray(current_stage=CropStage.SOAKING, soaking_at=T0)
        expected = T0 + timedelta(hours=8) + timedelta(days=12)
        assert crop_timing.expected_harvest_at(tray, _profile()) == expected

    def test_expected_harvest_from_germination(self):
        """Test: Ohne Einweichen beginnt die Rechnung mit der Keimung"""
        profile = _profile(seed_soak_hours=0, blackout_days=0, light_days=8)
        tray = Tray(current_stage=CropStage.LIGHT, germination_at=T0, light_at=T0 + timedelta(days=2))
        assert crop_timing.expected_harvest_at(tray, profile) == T0 + timedelta(days=10)

    def test_ready_to_harvest(self):
        """Test: Erntereif nach Ablauf der Lichtphase oder durch Markierung"""
        profile = _profile()
        tray = Tray(current_stage=CropStage.LIGHT, light_at=T0)

        assert crop_timing.is_ready_to_harvest(tray, profile, T0 + timedelta(days=6)) is False
        assert crop_timing.is_ready_to_harvest(tray, profile, T0 + timedelta(days=7)) is True

        tray.ready_flagged_at = T0 + timedelta(days=1)
        assert crop_timing.is_ready_to_harvest(tray, profile, T0 + timedelta(days=1)) is True

    def test_days_to_maturity_only_timings(self):
        """Test: Profil nur mit Gesamtdauer liefert Erntezeitpunkt nach Ablauf der Gesamtdauer"""
        profile = _profile(
            seed_soak_hours=0, germination_days=0, blackout_days=0, light_days=0, days_to_maturity=10
        )
        tray = Tray(current_stage=CropStage.LIGHT, germination_at=T0, light_at=T0)

        assert crop_timing.expected_harvest_at(tray, profile) == T0 + timedelta(days=10)
        assert crop_timing.is_ready_to_harvest(tray, profile, T0 + timedelta(hours=1)) is False
        assert crop_timing.is_ready_to_harvest(tray, profile, T0 + timedelta(days=10)) is True

    def test_harvested_tray(self):
        """Test: Geerntete Trays haben keine Restzeit, das Alter endet mit der Ernte"""
        tray = Tray(
            current_stage=CropStage.HARVESTED,
            germination_at=T0,
            light_at=T0 + timedelta(days=2),
            harvested_at=T0 + timedelta(days=10),
        )
        timings = crop_timing.compute_timings(tray, _profile(), T0 + timedelta(days=30))

        assert timings.time_to_next_stage == timedelta(0)
        assert timings.ready_to_advance is False
        assert timings.ready_to_harvest is False
        assert timings.total_age == timedelta(days=10)

    def test_no_timestamps(self):
        tray = Tray(current_stage=CropStage.GERMINATION)
        timings = crop_timing.compute_timings(tray, _profile(), T0)
        assert timings.stage_age is None
        assert timings.total_age is None
        assert timings.expected_harvest_at is None


class TestFormatDuration:
    """Tests für die kompakte Zeitanzeige"""

    def test_minutes(self):
        assert format_duration(timedelta(minutes=45)) == "45m"

    def test_hours(self):
        assert format_duration(timedelta(hours=3, minutes=20)) == "3h 20m"
        assert format_duration(timedelta(hours=2)) == "2h"

    def test_days(self):
        assert format_duration(timedelta(days=2, hours=4)) == "2d 4h"
        assert format_duration(timedelta(days=3)) == "3d"

    def test_weeks(self):
        assert format_duration(timedelta(days=10)) == "1w 3d"
        assert format_duration(timedelta(weeks=2)) == "2w"

    def test_none(self):
        assert format_duration(None) is None


class TestActiveProfile:
    """Tests für das aktive Wachstumsprofil einer Sorte"""

    def test_profile_from_grow_plan(self, db, pea):
        profile = get_active_profile(db, pea.id)
        assert profile.seed_id == pea.id
        assert profile.soak_days == 1
        assert profile.total_growing_days == 12

    def test_inactive_profile_is_ignored(self, db, sunflower):
        """Test: Ohne aktives Profil wird NotFoundError ausgelöst"""
        sunflower.grow_plans[0].is_active = False
        db.flush()
        with pytest.raises(NotFoundError):
            get_active_profile(db, sunflower.id)
