from visafirma.schemas import common, delegate, document

__all__ = [
    "common",
    "delegate",
    "document",
]
