from __future__ import annotations

from typing import Any, Dict, Optional

from visafirma.models.document import SignStatus


class VisaFirmaError(Exception):
    """Error de dominio base; los servicios sólo propagan subclases de este tipo."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(VisaFirmaError):
    pass


class NotFoundError(VisaFirmaError):
    pass


class ConflictError(VisaFirmaError):
    status: SignStatus | None = None

    def __init__(
        self,
        message: str,
        *,
        status: SignStatus | None = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details)
        if status is not None:
            self.status = status


class AlreadySignedError(ConflictError):
    status = SignStatus.ALREADY_SIGNED


class NotYourTurnError(ConflictError):
    status = SignStatus.NOT_YOUR_TURN


class DelegateConflictError(ConflictError):
    status = SignStatus.DELEGATE_CONFLICT


class NotEligibleError(ConflictError):
    pass


class DuplicateDelegateError(ConflictError):
    pass


class DelegateStateError(ConflictError):
    pass


class ExternalProviderError(VisaFirmaError):
    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.status_code = status_code


class StorageInconsistencyError(VisaFirmaError):
    pass


class InternalError(VisaFirmaError):
    pass
