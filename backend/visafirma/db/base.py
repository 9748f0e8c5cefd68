# noqa: F401 to ensure models are imported for metadata
from visafirma.models.delegate import Delegate
from visafirma.models.document import Document, DocumentSignature

__all__ = [
    "Delegate",
    "Document",
    "DocumentSignature",
]
