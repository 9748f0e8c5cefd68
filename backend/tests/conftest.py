from __future__ import annotations

import itertools
import os
import uuid

import pytest
from sqlalchemy import text
from sqlmodel import Session, SQLModel, create_engine

from visafirma.db import session as db_session_module
from visafirma.schemas.document import DocumentCreate, SignDocumentInput, SignerCreate
from visafirma.services.document import DocumentService
from visafirma.services.signing_provider import ProviderResult
from visafirma.services.storage import LocalStorage
from visafirma.utils.security import compute_checksum

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\n%%EOF"


@pytest.fixture()
def db_engine(tmp_path):
    test_database_url = os.getenv("TEST_DATABASE_URL")
    if not test_database_url:
        db_path = tmp_path / f"test_{uuid.uuid4().hex}.db"
        test_database_url = f"sqlite:///{db_path}"

    is_postgres = test_database_url.startswith("postgresql")

    admin_engine = None
    schema_name = None

    if is_postgres:
        schema_name = f"test_{uuid.uuid4().hex}"
        admin_engine = create_engine(test_database_url, future=True)
        with admin_engine.connect() as conn:
            conn.execution_options(isolation_level="AUTOCOMMIT").execute(
                text(f'CREATE SCHEMA IF NOT EXISTS "{schema_name}"')
            )
        client_encoding = os.getenv("POSTGRES_CLIENT_ENCODING", "UTF8")
        connect_args = {"options": f"-csearch_path={schema_name},public -cclient_encoding={client_encoding}"}
        engine = create_engine(test_database_url, connect_args=connect_args, future=True)
    else:
        engine = create_engine(test_database_url, connect_args={"check_same_thread": False})

    SQLModel.metadata.create_all(bind=engine)

    original_engine = db_session_module.engine
    db_session_module.engine = engine

    yield engine

    db_session_module.engine = original_engine
    engine.dispose()
    if is_postgres and admin_engine and schema_name:
        with admin_engine.connect() as conn:
            conn.execution_options(isolation_level="AUTOCOMMIT").execute(
                text(f'DROP SCHEMA IF EXISTS "{schema_name}" CASCADE')
            )
        admin_engine.dispose()


@pytest.fixture()
def db_session(db_engine) -> Session:
    with Session(db_engine) as session:
        yield session


@pytest.fixture()
def storage_env(monkeypatch, tmp_path) -> None:
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir(exist_ok=True)
    monkeypatch.setenv("VISAFIRMA_STORAGE", str(storage_dir))
    yield


@pytest.fixture()
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(base_dir=tmp_path / "artifacts")


class FakeSigningProvider:
    """Proveedor en memoria: agrega la marca del firmante y registra cada llamada."""

    def __init__(self, *, error: Exception | None = None, result: ProviderResult | None = None) -> None:
        self.error = error
        self.result = result
        self.calls: list[dict] = []

    def sign(self, *, content, checksum, run, inputs):
        self.calls.append({"content": content, "checksum": checksum, "run": run, "inputs": inputs})
        if self.error is not None:
            raise self.error
        if self.result is not None:
            return self.result
        signed = content + f"|firmado:{run}".encode()
        return ProviderResult(
            success=True,
            signed_content=signed,
            signed_checksum=compute_checksum(signed),
            metadata={"filesSigned": 1},
            request_id=len(self.calls),
        )


@pytest.fixture()
def provider() -> FakeSigningProvider:
    return FakeSigningProvider()


@pytest.fixture()
def name_generator():
    counter = itertools.count(1)
    return lambda original: f"doc-{next(counter)}.pdf"


@pytest.fixture()
def document_service(db_session: Session, storage: LocalStorage, name_generator) -> DocumentService:
    return DocumentService(db_session, storage=storage, name_generator=name_generator)


@pytest.fixture()
def make_document(document_service: DocumentService):
    def _make(signers, *, creator_rut: str = "99", name: str = "Contrato", content: bytes = PDF_BYTES):
        payload = DocumentCreate(
            name=name,
            signers=[
                SignerCreate(rut=rut, order=order, type=signer_type)
                for rut, order, signer_type in signers
            ],
        )
        return document_service.create_document(creator_rut, payload, content)

    return _make


@pytest.fixture()
def sign_inputs() -> SignDocumentInput:
    return SignDocumentInput(entity="Municipalidad", purpose="Desatendido")


@pytest.fixture()
def provider_factory():
    return FakeSigningProvider


@pytest.fixture()
def pdf_bytes() -> bytes:
    return PDF_BYTES
