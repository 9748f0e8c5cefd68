from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import update
from sqlmodel import Session, select

from visafirma.core.exceptions import AlreadySignedError, NotFoundError
from visafirma.models.document import Document, DocumentSignature
from visafirma.schemas.document import SignerCreate


def load_document(session: Session, document_id: str | UUID, *, include_deleted: bool = False) -> Document:
    try:
        document_uuid = UUID(str(document_id))
    except (TypeError, ValueError) as exc:
        raise NotFoundError(f"Documento con el id {document_id} no encontrado") from exc
    document = session.get(Document, document_uuid)
    if not document or (document.deleted_at is not None and not include_deleted):
        raise NotFoundError(f"Documento con el id {document_id} no encontrado")
    return document


def load_slots(session: Session, document: Document) -> list[DocumentSignature]:
    return list(
        session.exec(
            select(DocumentSignature)
            .where(DocumentSignature.document_id == document.id)
            .order_by(DocumentSignature.signer_order)
            .execution_options(populate_existing=True)
        ).all()
    )


def lock_slot(session: Session, slot_id: UUID) -> DocumentSignature:
    """Relee la firma con bloqueo de fila hasta el fin de la transacción."""
    slot = session.exec(
        select(DocumentSignature)
        .where(DocumentSignature.id == slot_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).first()
    if not slot:
        raise NotFoundError("La firma solicitada ya no existe")
    return slot


def build_slots(document: Document, signers: Iterable[SignerCreate]) -> list[DocumentSignature]:
    return [
        DocumentSignature(
            document_id=document.id,
            owner_rut=signer.rut,
            signer_rut=None,
            signer_order=signer.order,
            signer_type=signer.type,
            is_signed=False,
        )
        for signer in signers
    ]


def claim_slot(
    session: Session, slot: DocumentSignature, signer_rut: str, signed_at: datetime | None = None
) -> DocumentSignature:
    """
    Marca la firma como realizada solo si sigue pendiente en la base.

    El UPDATE condicionado a ``is_signed = false`` es la fuente de verdad: si
    otra transacción ya la tomó, no afecta filas y se rechaza la firma.
    """
    if slot.is_signed:
        raise AlreadySignedError("Esta firma ya fue completada")
    signed_at = signed_at or datetime.utcnow()
    result = session.connection().execute(
        update(DocumentSignature)
        .where(DocumentSignature.id == slot.id)
        .where(DocumentSignature.is_signed.is_(False))
        .values(signer_rut=signer_rut, is_signed=True, signed_at=signed_at, updated_at=signed_at)
    )
    if result.rowcount != 1:
        raise AlreadySignedError("Esta firma ya fue completada")
    session.refresh(slot)
    return slot


def is_complete(slots: Sequence[DocumentSignature]) -> bool:
    return all(slot.is_signed for slot in slots)


def refresh_completion(document: Document, slots: Sequence[DocumentSignature]) -> bool:
    """Recalcula ``is_fully_signed`` desde las firmas; retorna True si cambió."""
    complete = is_complete(slots)
    if document.is_fully_signed == complete:
        return False
    document.is_fully_signed = complete
    document.touch()
    return True
