from datetime import datetime, timedelta

import pytest
from sqlmodel import Session, select

from visafirma.core.exceptions import (
    InternalError,
    NotFoundError,
    StorageInconsistencyError,
    ValidationError,
)
from visafirma.models.document import Document, DocumentSignature, SignerType
from visafirma.schemas.document import DocumentCreate, DocumentFilters, SignerCreate
from visafirma.services.document import DocumentService, validate_signers

V = SignerType.VISADOR
F = SignerType.FIRMADOR


def _signers(*items) -> list[SignerCreate]:
    return [SignerCreate(rut=rut, order=order, type=signer_type) for rut, order, signer_type in items]


def test_validate_signers_rejects_duplicated_ruts() -> None:
    with pytest.raises(ValidationError, match="únicos"):
        validate_signers(_signers(("1", 1, V), ("1", 2, F)))


@pytest.mark.parametrize(
    ("visador_orders", "firmador_orders", "valid"),
    [
        ([1], [2], True),
        ([1, 2], [3, 4], True),
        ([2], [2], False),
        ([3], [1], False),
        ([1, 5], [4], False),
    ],
)
def test_validate_signers_phase_order(visador_orders, firmador_orders, valid) -> None:
    signers = _signers(
        *[(f"v{i}", order, V) for i, order in enumerate(visador_orders)],
        *[(f"f{i}", order, F) for i, order in enumerate(firmador_orders)],
    )
    if valid:
        validate_signers(signers)
    else:
        with pytest.raises(ValidationError, match="visadores"):
            validate_signers(signers)


def test_single_phase_lists_are_valid() -> None:
    validate_signers(_signers(("1", 5, F), ("2", 1, F)))
    validate_signers(_signers(("1", 5, V), ("2", 5, V)))


def test_create_document_persists_slots_and_artifact(make_document, db_session: Session, storage, pdf_bytes) -> None:
    document = make_document([("1", 1, V), ("2", 2, F)], creator_rut="99")

    year = document.created_at.year
    assert document.file_name == "doc-1.pdf"
    assert document.storage_path == f"uploads/{year}/doc-1.pdf"
    assert document.is_fully_signed is False
    assert storage.get(document.storage_path) == pdf_bytes

    slots = db_session.exec(
        select(DocumentSignature).where(DocumentSignature.document_id == document.id)
    ).all()
    assert {(s.owner_rut, s.signer_type, s.signer_order) for s in slots} == {("1", V, 1), ("2", F, 2)}
    assert all(s.signer_rut is None and not s.is_signed for s in slots)


def test_create_document_rejects_invalid_list_without_side_effects(
    document_service: DocumentService, db_session: Session, storage, pdf_bytes
) -> None:
    payload = DocumentCreate(name="Contrato", signers=_signers(("1", 2, V), ("2", 1, F)))

    with pytest.raises(ValidationError):
        document_service.create_document("99", payload, pdf_bytes)

    assert db_session.exec(select(Document)).all() == []
    assert not any(storage.base_dir.rglob("*.pdf"))


def test_create_document_rejects_empty_content(document_service: DocumentService) -> None:
    payload = DocumentCreate(name="Contrato", signers=_signers(("1", 1, F)))

    with pytest.raises(ValidationError):
        document_service.create_document("99", payload, b"")


def test_upload_failure_rolls_back_rows(db_session: Session, name_generator, pdf_bytes) -> None:
    class BrokenStorage:
        def put(self, data, path):
            raise OSError("disco lleno")

        def get(self, path):
            raise FileNotFoundError(path)

        def delete(self, path):
            pass

    service = DocumentService(db_session, storage=BrokenStorage(), name_generator=name_generator)
    payload = DocumentCreate(name="Contrato", signers=_signers(("1", 1, F)))

    with pytest.raises(StorageInconsistencyError):
        service.create_document("99", payload, pdf_bytes)

    assert db_session.exec(select(Document)).all() == []
    assert db_session.exec(select(DocumentSignature)).all() == []


def test_commit_failure_deletes_uploaded_artifact(
    document_service: DocumentService, db_session: Session, storage, monkeypatch, pdf_bytes
) -> None:
    def failing_commit():
        raise RuntimeError("conexión perdida")

    monkeypatch.setattr(db_session, "commit", failing_commit)
    payload = DocumentCreate(name="Contrato", signers=_signers(("1", 1, F)))

    with pytest.raises(InternalError) as excinfo:
        document_service.create_document("99", payload, pdf_bytes)

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert not any(storage.base_dir.rglob("*.pdf"))


def test_commit_failure_with_failing_delete_surfaces_original_error(
    db_session: Session, name_generator, monkeypatch, pdf_bytes
) -> None:
    class StickyStorage:
        def __init__(self):
            self.files = {}

        def put(self, data, path):
            self.files[path] = data

        def get(self, path):
            return self.files[path]

        def delete(self, path):
            raise OSError("no se puede borrar")

    def failing_commit():
        raise RuntimeError("conexión perdida")

    storage = StickyStorage()
    service = DocumentService(db_session, storage=storage, name_generator=name_generator)
    monkeypatch.setattr(db_session, "commit", failing_commit)

    with pytest.raises(InternalError) as excinfo:
        service.create_document("99", DocumentCreate(name="X", signers=_signers(("1", 1, F))), pdf_bytes)

    assert str(excinfo.value.__cause__) == "conexión perdida"


def test_get_document_and_info(make_document, document_service: DocumentService) -> None:
    created = make_document([("2", 2, F), ("1", 1, V)])

    document = document_service.get_document(created.id)
    info = document_service.get_document_info(str(created.id))

    assert document.storage_path == created.storage_path
    assert [s.owner_rut for s in info.signatures] == ["1", "2"]
    assert info.signatures[0].signer_type == V


def test_get_document_with_invalid_id(document_service: DocumentService) -> None:
    with pytest.raises(NotFoundError):
        document_service.get_document("no-es-uuid")


def test_delete_document_only_by_creator(make_document, document_service: DocumentService) -> None:
    document = make_document([("1", 1, F)], creator_rut="99")

    with pytest.raises(NotFoundError):
        document_service.delete_document("1", document.id)

    deleted = document_service.delete_document("99", document.id)
    assert deleted.deleted_at is not None

    with pytest.raises(NotFoundError):
        document_service.get_document(document.id)


def test_list_fully_signed_with_filters(make_document, document_service: DocumentService, db_session: Session) -> None:
    first = make_document([("1", 1, F)], name="Contrato arriendo")
    second = make_document([("1", 1, F)], name="Acta directorio")
    make_document([("1", 1, F)], name="Contrato pendiente")

    for document in (first, second):
        slot = db_session.exec(
            select(DocumentSignature).where(DocumentSignature.document_id == document.id)
        ).one()
        slot.is_signed = True
        slot.signer_rut = "1"
        slot.signed_at = datetime.utcnow()
        document.is_fully_signed = True
        db_session.add(slot)
        db_session.add(document)
    db_session.commit()

    page = document_service.list_fully_signed(page=1, limit=10)
    assert page.total == 2
    assert {doc.name for doc in page.data} == {"Contrato arriendo", "Acta directorio"}

    filtered = document_service.list_fully_signed(filters=DocumentFilters(name="contrato"))
    assert [doc.name for doc in filtered.data] == ["Contrato arriendo"]

    future = document_service.list_fully_signed(
        filters=DocumentFilters(start_date=datetime.utcnow() + timedelta(days=1))
    )
    assert future.total == 0


def test_pagination_bounds(document_service: DocumentService) -> None:
    with pytest.raises(ValidationError):
        document_service.list_fully_signed(page=0)
    with pytest.raises(ValidationError):
        document_service.list_fully_signed(limit=1000)


def test_reconcile_completion_repairs_drifted_flag(
    make_document, document_service: DocumentService, db_session: Session
) -> None:
    document = make_document([("1", 1, F)])
    document.is_fully_signed = True
    db_session.add(document)
    db_session.commit()

    assert document_service.reconcile_completion(dry_run=True) == [document.id]
    db_session.refresh(document)
    assert document.is_fully_signed is True

    assert document_service.reconcile_completion() == [document.id]
    db_session.refresh(document)
    assert document.is_fully_signed is False
    assert document_service.reconcile_completion() == []
