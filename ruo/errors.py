# ruo/errors.py
from typing import Optional


class RuoError(Exception):
    """Base des erreurs métier; `code` est renvoyé tel quel au client."""

    status_code = 400
    code = "error"

    def __init__(self, message: str, *, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        out = {"error": self.code, "message": self.message}
        if self.detail:
            out["detail"] = self.detail
        return out


class ValidationError(RuoError):
    """Precondition not met; never mutates state."""

    status_code = 400
    code = "validation_error"


class NotFoundError(RuoError):
    status_code = 404
    code = "not_found"


class ExternalServiceError(RuoError):
    """Directory lookup, geocoding or mail delivery failed."""

    status_code = 502
    code = "external_service_error"


# Messages de validation partagés par l'orchestrateur et les routes
ALREADY_SUBMITTED = "already submitted"
NO_EVIDENCE = "no evidence"
NO_RESPONSIBLE_AUTHORITY = "no responsible authority"
NOT_DRAFT = "report is not a draft"
