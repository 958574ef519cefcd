"""
Fachliche Fehlerklassen der Produktionsplanung.

Alle Fehler erben von ValueError, damit bestehende `except ValueError`
Stellen weiterhin greifen. `errors` enthält pro betroffener Entität eine
Meldung, sodass mehrere Verstöße gemeinsam zurückgegeben werden können.
"""
from typing import Any, Optional


class ProductionError(ValueError):
    """Basisklasse für Fehler der Produktionsplanung"""

    status_code = 400

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []

    def to_detail(self) -> dict[str, Any]:
        return {"message": self.message, "errors": self.errors}


class NotFoundError(ProductionError):
    """Entität existiert nicht"""
    status_code = 404


class ValidationFailed(ProductionError):
    """Fehlerhafte Eingabe (fehlende Felder, Wertebereich)"""
    status_code = 422


class BusinessRuleViolation(ProductionError):
    """Verstoß gegen eine Geschäftsregel"""
    status_code = 409


class InvalidStageTransition(ProductionError):
    """Unzulässiger Stufenwechsel eines Trays"""
    status_code = 409


class TransientConflict(ProductionError):
    """Gleichzeitige Änderung, die Anfrage kann wiederholt werden"""
    status_code = 503
