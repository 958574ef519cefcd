"""
Ertragsberechnung aus historischen Ernten.

Jüngere Ernten zählen stärker: Gewicht = exp(-Alter in Tagen / decay_days).
Teilernten werden auf ein volles Tray hochgerechnet.
"""
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

import numpy as np
import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.product import GrowPlan
from app.models.production import Harvest, HarvestLine

logger = logging.getLogger(__name__)


class HarvestYieldCalculator:
    """Gewichteter Ertrag pro Tray je Sorte"""

    def __init__(self, db: Session, history_days: Optional[int] = None, decay_days: Optional[int] = None):
        settings = get_settings()
        self.db = db
        self.history_days = history_days or settings.yield_history_days
        self.decay_days = decay_days or settings.yield_decay_days

    def _fetch_history(self, seed_id: UUID, today: date) -> pd.DataFrame:
        """Lädt Erntepositionen der Sorte im Betrachtungszeitraum"""
        since = today - timedelta(days=self.history_days)
        rows = self.db.execute(
            select(
                Harvest.harvest_date.label("ds"),
                HarvestLine.harvested_weight_grams.label("weight"),
                HarvestLine.percentage_harvested.label("percentage"),
            )
            .join(HarvestLine.harvest)
            .where(
                Harvest.seed_id == seed_id,
                Harvest.harvest_date >= since,
                Harvest.harvest_date <= today,
                HarvestLine.percentage_harvested > 0,
            )
        ).all()

        if not rows:
            return pd.DataFrame(columns=["ds", "weight", "percentage"])

        df = pd.DataFrame(
            [{"ds": r.ds, "weight": float(r.weight), "percentage": float(r.percentage)} for r in rows]
        )
        df["ds"] = pd.to_datetime(df["ds"])
        return df

    def _with_weights(self, df: pd.DataFrame, today: date) -> pd.DataFrame:
        df = df.copy()
        # Auf volles Tray hochrechnen
        df["yield_per_tray"] = df["weight"] / (df["percentage"] / 100.0)
        df["age_days"] = (pd.Timestamp(today) - df["ds"]).dt.days
        df["weight_factor"] = np.exp(-df["age_days"] / self.decay_days)
        return df

    def weighted_yield(self, seed_id: UUID, today: Optional[date] = None) -> Optional[Decimal]:
        """Gewichteter Ertrag pro Tray oder None ohne Historie"""
        today = today or date.today()
        df = self._fetch_history(seed_id, today)
        if df.empty:
            return None

        df = self._with_weights(df, today)
        value = np.average(df["yield_per_tray"], weights=df["weight_factor"])
        return Decimal(str(round(float(value), 2)))

    def yield_statistics(self, grow_plan: GrowPlan, today: Optional[date] = None) -> dict:
        """Kennzahlen für die Pflege des Wachstumsprofils"""
        today = today or date.today()
        expected = float(grow_plan.yield_grams_per_unit)
        df = self._fetch_history(grow_plan.seed_id, today)

        if df.empty:
            return {
                "harvest_count": 0,
                "expected_yield": expected,
                "average_yield": None,
                "weighted_yield": None,
                "std_deviation": None,
                "variance_percent": None,
            }

        df = self._with_weights(df, today)
        weighted = float(np.average(df["yield_per_tray"], weights=df["weight_factor"]))
        average = float(df["yield_per_tray"].mean())
        std = float(df["yield_per_tray"].std(ddof=0))

        variance = ((weighted - expected) / expected * 100) if expected else None
        if variance is not None and abs(variance) > 15:
            logger.warning(
                f"Ertrag {grow_plan.code} weicht um {variance:.1f}% vom Profil ab "
                f"(erwartet {expected:.0f}g, gewichtet {weighted:.0f}g)"
            )

        return {
            "harvest_count": int(len(df)),
            "expected_yield": expected,
            "average_yield": round(average, 2),
            "weighted_yield": round(weighted, 2),
            "std_deviation": round(std, 2),
            "variance_percent": round(variance, 2) if variance is not None else None,
        }
