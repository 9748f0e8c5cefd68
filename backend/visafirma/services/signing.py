from __future__ import annotations

from uuid import UUID

from sqlmodel import Session

from visafirma.core.exceptions import (
    AlreadySignedError,
    DelegateConflictError,
    ExternalProviderError,
    InternalError,
    NotEligibleError,
    NotYourTurnError,
    StorageInconsistencyError,
    VisaFirmaError,
)
from visafirma.core.logging_setup import get_logger
from visafirma.models.document import Document, DocumentSignature, SignStatus
from visafirma.schemas.document import SignatureRead, SignDocumentInput, SignResult
from visafirma.services import ledger
from visafirma.services.delegate import DelegateService
from visafirma.services.sign_order import evaluate_slot, order_violation, resolve_slot
from visafirma.services.signing_provider import ProviderResult, SigningProvider, get_signing_provider
from visafirma.services.storage import ArtifactStore, get_storage
from visafirma.utils.security import compute_checksum

logger = get_logger("signing")

_CONFLICT_MESSAGE = (
    "Eres titular de una firma y delegado de otro firmante pendiente en este documento; "
    "no es posible determinar en qué calidad firmas"
)


class SigningService:
    """
    Orquesta la firma de un documento por un RUT.

    Localiza la firma que le corresponde (propia o delegada), la bloquea,
    valida el orden, invoca al proveedor y toma la firma con un UPDATE
    condicionado antes de escribir el artefacto, todo en una sola transacción.
    El artefacto firmado reemplaza al original en la misma ruta; si la
    transacción falla se restaura el contenido anterior.
    """

    def __init__(
        self,
        session: Session,
        storage: ArtifactStore | None = None,
        provider: SigningProvider | None = None,
        delegates: DelegateService | None = None,
    ) -> None:
        self.session = session
        self.storage = storage or get_storage()
        self.provider = provider or get_signing_provider()
        self.delegates = delegates or DelegateService(session)

    def sign_document(
        self,
        actor_rut: str,
        document_id: str | UUID,
        inputs: SignDocumentInput,
    ) -> SignResult:
        try:
            return self._sign(actor_rut, document_id, inputs)
        except VisaFirmaError:
            self.session.rollback()
            raise
        except Exception as exc:
            self.session.rollback()
            logger.exception("Error inesperado firmando documento %s por %s", document_id, actor_rut)
            raise InternalError("Error al firmar el documento") from exc

    def _sign(self, actor_rut: str, document_id: str | UUID, inputs: SignDocumentInput) -> SignResult:
        document = ledger.load_document(self.session, document_id)
        slots = ledger.load_slots(self.session, document)
        owners = self.delegates.delegated_owner_ruts(actor_rut)

        resolution = resolve_slot(slots, actor_rut, owners)
        if not resolution.eligible:
            raise NotEligibleError("No tienes firmas pendientes en este documento")
        self._raise_for_status(resolution.status, slots, resolution.slot)

        slot = ledger.lock_slot(self.session, resolution.slot.id)
        if slot.is_signed:
            raise AlreadySignedError("Esta firma ya fue completada")
        slots = ledger.load_slots(self.session, document)
        self._raise_for_status(evaluate_slot(slots, slot, actor_rut, owners), slots, slot)

        original = self._read_artifact(document)
        result = self._invoke_provider(original, actor_rut, inputs, document)

        # la firma se toma antes de escribir: quien pierde la carrera no toca el archivo
        ledger.claim_slot(self.session, slot, actor_rut)
        try:
            self.storage.put(result.signed_content, document.storage_path)
        except Exception as exc:
            logger.error("No se pudo guardar el archivo firmado %s: %s", document.storage_path, exc)
            self._restore_artifact(document.storage_path, original)
            raise StorageInconsistencyError(
                "No se pudo guardar el archivo firmado",
                details={"path": document.storage_path},
            ) from exc

        completed = ledger.refresh_completion(document, slots)
        self.session.add(slot)
        self.session.add(document)
        try:
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            logger.exception("Fallo al confirmar la firma del documento %s", document.id)
            self._restore_artifact(document.storage_path, original)
            raise InternalError("Error al registrar la firma") from exc

        self.session.refresh(slot)
        self.session.refresh(document)
        logger.info(
            "Documento %s firmado por %s (titular %s, %s orden %s)",
            document.id,
            actor_rut,
            slot.owner_rut,
            slot.signer_type.value,
            slot.signer_order,
        )
        if completed and document.is_fully_signed:
            logger.info("Documento %s completamente firmado", document.id)

        return SignResult(
            signature=SignatureRead.model_validate(slot),
            is_fully_signed=document.is_fully_signed,
            metadata={
                "signed_checksum": result.signed_checksum,
                "request_id": result.request_id,
                "via_delegation": resolution.via_delegation,
                "provider": result.metadata,
            },
        )

    @staticmethod
    def _raise_for_status(
        status: SignStatus | None,
        slots: list[DocumentSignature],
        slot: DocumentSignature,
    ) -> None:
        if status == SignStatus.ALREADY_SIGNED:
            raise AlreadySignedError("Ya firmaste este documento")
        if status == SignStatus.DELEGATE_CONFLICT:
            raise DelegateConflictError(_CONFLICT_MESSAGE)
        if status == SignStatus.NOT_YOUR_TURN:
            raise NotYourTurnError(order_violation(slots, slot) or "Aún no es tu turno de firmar")

    def _read_artifact(self, document: Document) -> bytes:
        try:
            return self.storage.get(document.storage_path)
        except Exception as exc:
            logger.error("Archivo %s del documento %s no disponible: %s", document.storage_path, document.id, exc)
            raise StorageInconsistencyError(
                "El archivo del documento no está disponible",
                details={"path": document.storage_path},
            ) from exc

    def _invoke_provider(
        self,
        content: bytes,
        actor_rut: str,
        inputs: SignDocumentInput,
        document: Document,
    ) -> ProviderResult:
        checksum = compute_checksum(content)
        try:
            result = self.provider.sign(content=content, checksum=checksum, run=actor_rut, inputs=inputs)
        except ExternalProviderError as exc:
            logger.warning("Servicio de firma falló para documento %s: %s", document.id, exc.message)
            raise
        except Exception as exc:
            logger.warning("Servicio de firma falló para documento %s: %s", document.id, exc)
            raise ExternalProviderError(f"Error en la firma digital: {exc}") from exc

        if not result.success or not result.signed_content:
            logger.warning(
                "Servicio de firma rechazó documento %s (solicitud %s): %s",
                document.id,
                result.request_id,
                result.error,
            )
            raise ExternalProviderError(
                result.error or "El servicio de firma rechazó el documento",
                details={"request_id": result.request_id, "metadata": result.metadata},
            )
        return result

    def _restore_artifact(self, path: str, original: bytes) -> None:
        try:
            self.storage.put(original, path)
        except Exception as exc:
            logger.error("No se pudo restaurar el archivo original %s: %s", path, exc)
