from enum import Enum


class OrderStatus(str, Enum):
    """Status einer Bestellung - vollständiger Lebenszyklus"""
    ENTWURF = "ENTWURF"              # Draft - kann bearbeitet werden
    BESTAETIGT = "BESTAETIGT"        # Confirmed - Planung erstellt
    IN_PRODUKTION = "IN_PRODUKTION"  # Erstes Tray ausgesät
    ERNTEREIF = "ERNTEREIF"          # Alle Trays erntereif
    GEERNTET = "GEERNTET"            # Alle Trays geerntet
    GELIEFERT = "GELIEFERT"          # Delivered
    STORNIERT = "STORNIERT"          # Cancelled

    @property
    def is_final(self) -> bool:
        return self in (OrderStatus.GELIEFERT, OrderStatus.STORNIERT)


class OrderLineUnit(str, Enum):
    """Einheit einer Bestellposition"""
    G = "G"          # Gramm Schnittware
    TRAY = "TRAY"    # Lebende Trays


class PlanStatus(str, Enum):
    """Status eines Produktionsplans"""
    DRAFT = "DRAFT"            # Vorgeschlagen, noch nicht freigegeben
    ACTIVE = "ACTIVE"          # Freigegeben, Trays können angelegt werden
    COMPLETED = "COMPLETED"    # Alle Trays geerntet
    CANCELLED = "CANCELLED"    # Storniert, Mengen eingefroren

    @classmethod
    def open_states(cls) -> tuple["PlanStatus", ...]:
        return (cls.DRAFT, cls.ACTIVE)


class CropStage(str, Enum):
    """Wachstumsstufe eines Trays"""
    SOAKING = "SOAKING"            # Einweichen
    GERMINATION = "GERMINATION"    # Keimung
    BLACKOUT = "BLACKOUT"          # Dunkelphase
    LIGHT = "LIGHT"                # Lichtphase
    HARVESTED = "HARVESTED"        # Geerntet
    CANCELLED = "CANCELLED"        # Verworfen

    @property
    def is_terminal(self) -> bool:
        return self in (CropStage.HARVESTED, CropStage.CANCELLED)


# Reihenfolge der Stufen, CANCELLED liegt außerhalb
STAGE_ORDER: tuple[CropStage, ...] = (
    CropStage.SOAKING,
    CropStage.GERMINATION,
    CropStage.BLACKOUT,
    CropStage.LIGHT,
    CropStage.HARVESTED,
)

# Zeitstempel-Spalte pro Stufe
STAGE_TIMESTAMP_FIELDS: dict[CropStage, str] = {
    CropStage.SOAKING: "soaking_at",
    CropStage.GERMINATION: "germination_at",
    CropStage.BLACKOUT: "blackout_at",
    CropStage.LIGHT: "light_at",
    CropStage.HARVESTED: "harvested_at",
}


class StageAction(str, Enum):
    """Art eines Eintrags im Stufen-Protokoll"""
    START = "START"
    ADVANCE = "ADVANCE"
    REVERT = "REVERT"
    CANCEL = "CANCEL"
    SHIFT = "SHIFT"
    PARTIAL_HARVEST = "PARTIAL_HARVEST"
    HARVEST = "HARVEST"
    HARVEST_CORRECTION = "HARVEST_CORRECTION"


class DomainEventType(str, Enum):
    """Domain Events der Produktion"""
    CROP_PLANTED = "CROP_PLANTED"
    ALL_CROPS_READY = "ALL_CROPS_READY"
    ORDER_HARVESTED = "ORDER_HARVESTED"
    PLAN_REVIEW_REQUIRED = "PLAN_REVIEW_REQUIRED"
    ORDER_INFEASIBLE = "ORDER_INFEASIBLE"
