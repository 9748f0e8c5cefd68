from __future__ import annotations

from datetime import datetime
from typing import Callable, Literal, Sequence
from uuid import UUID

from sqlmodel import Session, func, select

from visafirma.core.exceptions import (
    InternalError,
    NotFoundError,
    StorageInconsistencyError,
    ValidationError,
    VisaFirmaError,
)
from visafirma.core.logging_setup import get_logger
from visafirma.models.document import Document, SignerType
from visafirma.schemas.common import Page
from visafirma.schemas.document import (
    DocumentCreate,
    DocumentDetail,
    DocumentFilters,
    DocumentRead,
    DocumentSlotItem,
    SignerCreate,
)
from visafirma.services import ledger
from visafirma.services.filters import apply_document_filters, validate_pagination
from visafirma.services.pending import PendingSignatureService
from visafirma.services.storage import ArtifactStore, artifact_path, generate_artifact_name, get_storage

logger = get_logger("documents")


def validate_signers(signers: Sequence[SignerCreate]) -> None:
    """Rechaza RUT repetidos y visadores que no antecedan a todos los firmadores."""
    if not signers:
        raise ValidationError("Debe indicar al menos un firmante")

    ruts = [signer.rut for signer in signers]
    duplicated = sorted({rut for rut in ruts if ruts.count(rut) > 1})
    if duplicated:
        raise ValidationError(
            "Los RUT de los firmantes deben ser únicos",
            details={"duplicated": duplicated},
        )

    visador_orders = [s.order for s in signers if s.type == SignerType.VISADOR]
    firmador_orders = [s.order for s in signers if s.type == SignerType.FIRMADOR]
    if visador_orders and firmador_orders and max(visador_orders) >= min(firmador_orders):
        raise ValidationError(
            "Todos los visadores deben tener un orden menor que los firmadores",
            details={
                "max_visador_order": max(visador_orders),
                "min_firmador_order": min(firmador_orders),
            },
        )


class DocumentService:
    def __init__(
        self,
        session: Session,
        storage: ArtifactStore | None = None,
        name_generator: Callable[[str], str] | None = None,
    ) -> None:
        self.session = session
        self.storage = storage or get_storage()
        self.name_generator = name_generator or generate_artifact_name

    def create_document(self, creator_rut: str, payload: DocumentCreate, content: bytes) -> Document:
        validate_signers(payload.signers)
        if not content:
            raise ValidationError("El archivo del documento está vacío")

        now = datetime.utcnow()
        file_name = self.name_generator(payload.original_filename)
        path = artifact_path(now, file_name)
        document = Document(
            name=payload.name,
            file_name=file_name,
            storage_path=path,
            creator_rut=creator_rut,
            is_fully_signed=False,
            created_at=now,
        )

        try:
            self.session.add(document)
            self.session.flush()
            self.session.add_all(ledger.build_slots(document, payload.signers))
            self.session.flush()
        except Exception as exc:
            self.session.rollback()
            logger.exception("No se pudo registrar el documento %s", payload.name)
            raise InternalError("Error al crear el documento") from exc

        try:
            self.storage.put(content, path)
        except Exception as exc:
            self.session.rollback()
            logger.error("Fallo al subir el archivo %s: %s", path, exc)
            raise StorageInconsistencyError(
                "No se pudo almacenar el archivo del documento",
                details={"path": path},
            ) from exc

        try:
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            logger.exception("Fallo al confirmar el documento %s; eliminando %s", payload.name, path)
            self._discard_artifact(path)
            raise InternalError("Error al crear el documento") from exc

        self.session.refresh(document)
        logger.info(
            "Documento %s creado por %s con %d firmantes",
            document.id,
            creator_rut,
            len(payload.signers),
        )
        return document

    def _discard_artifact(self, path: str) -> None:
        try:
            self.storage.delete(path)
        except Exception as exc:
            logger.error("No se pudo eliminar el archivo huérfano %s: %s", path, exc)

    def get_document(self, document_id: str | UUID) -> Document:
        return ledger.load_document(self.session, document_id)

    def get_document_info(self, document_id: str | UUID) -> DocumentDetail:
        document = ledger.load_document(self.session, document_id)
        detail = DocumentDetail.model_validate(document)
        detail.signatures = sorted(
            detail.signatures,
            key=lambda s: (0 if s.signer_type == SignerType.VISADOR else 1, s.signer_order),
        )
        return detail

    def get_document_content(self, document_id: str | UUID) -> bytes:
        document = ledger.load_document(self.session, document_id)
        try:
            return self.storage.get(document.storage_path)
        except FileNotFoundError as exc:
            raise StorageInconsistencyError(
                "El archivo del documento no existe en el almacenamiento",
                details={"path": document.storage_path},
            ) from exc

    def list_fully_signed(
        self,
        page: int = 1,
        limit: int | None = None,
        filters: DocumentFilters | None = None,
    ) -> Page[DocumentRead]:
        page, limit = validate_pagination(page, limit)
        statement = apply_document_filters(
            select(Document).where(Document.is_fully_signed.is_(True)),
            filters,
        )
        total = self.session.exec(select(func.count()).select_from(statement.subquery())).one()
        documents = self.session.exec(
            statement.order_by(Document.created_at.desc()).offset((page - 1) * limit).limit(limit)
        ).all()
        return Page[DocumentRead].build(
            [DocumentRead.model_validate(doc) for doc in documents],
            total=total,
            page=page,
            limit=limit,
        )

    def list_documents_by_rut(
        self,
        rut: str,
        page: int = 1,
        limit: int | None = None,
        filters: DocumentFilters | None = None,
        status: Literal["pending", "signed", "all"] = "all",
    ) -> Page[DocumentSlotItem]:
        return PendingSignatureService(self.session).list_slots(
            rut,
            page=page,
            limit=limit,
            filters=filters,
            status=status,
        )

    def delete_document(self, creator_rut: str, document_id: str | UUID) -> Document:
        document = ledger.load_document(self.session, document_id)
        if document.creator_rut != creator_rut:
            # No revelamos documentos ajenos
            raise NotFoundError(f"Documento con el id {document_id} no encontrado")
        document.deleted_at = document.touch()
        self.session.add(document)
        self.session.commit()
        self.session.refresh(document)
        logger.info("Documento %s eliminado por %s", document.id, creator_rut)
        return document

    def reconcile_completion(self, *, dry_run: bool = False) -> list[UUID]:
        """
        Recalcula ``is_fully_signed`` de cada documento a partir de sus firmas.

        Retorna los ids de los documentos cuyo indicador estaba desfasado. Con
        ``dry_run`` no persiste cambios.
        """
        corrected: list[UUID] = []
        try:
            documents = self.session.exec(
                select(Document).where(Document.deleted_at.is_(None)).order_by(Document.created_at)
            ).all()
            for document in documents:
                slots = ledger.load_slots(self.session, document)
                if ledger.refresh_completion(document, slots):
                    corrected.append(document.id)
                    self.session.add(document)
                    logger.warning(
                        "Documento %s tenía is_fully_signed desfasado; nuevo valor=%s",
                        document.id,
                        document.is_fully_signed,
                    )
            if dry_run:
                self.session.rollback()
            else:
                self.session.commit()
        except VisaFirmaError:
            self.session.rollback()
            raise
        except Exception as exc:
            self.session.rollback()
            raise InternalError("Error al reconciliar documentos") from exc
        return corrected
