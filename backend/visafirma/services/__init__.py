from visafirma.services.delegate import DelegateService
from visafirma.services.pending import PendingSignatureService
from visafirma.services.document import DocumentService
from visafirma.services.signing import SigningService

__all__ = [
    "DelegateService",
    "DocumentService",
    "PendingSignatureService",
    "SigningService",
]
