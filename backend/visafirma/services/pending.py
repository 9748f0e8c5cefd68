from __future__ import annotations

from typing import Collection, Literal, Sequence

from sqlalchemy import or_
from sqlmodel import Session, func, select

from visafirma.core.exceptions import ValidationError
from visafirma.models.document import Document, DocumentSignature
from visafirma.schemas.common import Page
from visafirma.schemas.document import DocumentFilters, DocumentSlotItem
from visafirma.services import ledger
from visafirma.services.delegate import DelegateService
from visafirma.services.filters import apply_document_filters, validate_pagination
from visafirma.services.sign_order import evaluate_slot, sort_key

SlotStatusFilter = Literal["pending", "signed", "all"]
_STATUS_FILTERS = ("pending", "signed", "all")


class PendingSignatureService:
    """
    Proyección de sólo lectura: qué puede hacer un RUT con cada documento.

    Usa el mismo evaluador que el orquestador de firma, por lo que el estado
    informado coincide con lo que ocurriría al intentar firmar.
    """

    def __init__(self, session: Session, delegates: DelegateService | None = None) -> None:
        self.session = session
        self.delegates = delegates or DelegateService(session)

    def get_pending_signatures(
        self,
        actor_rut: str,
        page: int = 1,
        limit: int | None = None,
        filters: DocumentFilters | None = None,
    ) -> Page[DocumentSlotItem]:
        return self.list_slots(actor_rut, page=page, limit=limit, filters=filters, status="pending")

    def list_slots(
        self,
        actor_rut: str,
        *,
        page: int = 1,
        limit: int | None = None,
        filters: DocumentFilters | None = None,
        status: SlotStatusFilter = "all",
    ) -> Page[DocumentSlotItem]:
        if status not in _STATUS_FILTERS:
            raise ValidationError(f"Estado inválido: {status}. Use pending, signed o all")
        page, limit = validate_pagination(page, limit)

        owners = self.delegates.delegated_owner_ruts(actor_rut)
        reachable = {actor_rut, *owners}

        slot_query = select(DocumentSignature.document_id).where(
            or_(
                DocumentSignature.owner_rut.in_(reachable),
                DocumentSignature.signer_rut == actor_rut,
            )
        )
        if status == "pending":
            slot_query = slot_query.where(DocumentSignature.is_signed.is_(False))
        elif status == "signed":
            slot_query = slot_query.where(DocumentSignature.is_signed.is_(True))

        statement = apply_document_filters(
            select(Document).where(Document.id.in_(slot_query)),
            filters,
        )
        total = self.session.exec(select(func.count()).select_from(statement.subquery())).one()
        documents = self.session.exec(
            statement.order_by(Document.created_at.desc()).offset((page - 1) * limit).limit(limit)
        ).all()

        items: list[DocumentSlotItem] = []
        for document in documents:
            slots = ledger.load_slots(self.session, document)
            items.extend(self._project(document, slots, actor_rut, owners, status))
        return Page[DocumentSlotItem].build(items, total=total, page=page, limit=limit)

    @staticmethod
    def _project(
        document: Document,
        slots: Sequence[DocumentSignature],
        actor_rut: str,
        owners: Collection[str],
        status: SlotStatusFilter,
    ) -> list[DocumentSlotItem]:
        items = []
        for slot in sorted(slots, key=sort_key):
            reachable = slot.owner_rut == actor_rut or slot.owner_rut in owners or slot.signer_rut == actor_rut
            if not reachable:
                continue
            if status == "pending" and slot.is_signed:
                continue
            if status == "signed" and not slot.is_signed:
                continue
            items.append(
                DocumentSlotItem(
                    document_id=document.id,
                    name=document.name,
                    file_name=document.file_name,
                    slot_id=slot.id,
                    owner_rut=slot.owner_rut,
                    signer_rut=slot.signer_rut,
                    signer_type=slot.signer_type,
                    signer_order=slot.signer_order,
                    signature_type="owner" if slot.owner_rut == actor_rut else "delegate",
                    is_signed=slot.is_signed,
                    signed_at=slot.signed_at,
                    status=evaluate_slot(slots, slot, actor_rut, owners),
                )
            )
        return items
