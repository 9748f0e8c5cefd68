import os
from contextlib import contextmanager
from typing import Any, Generator, Iterator

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

import visafirma.db.base  # noqa: F401
from visafirma.core.config import settings
from visafirma.core.logging_setup import get_logger
from visafirma.models.delegate import Delegate

logger = get_logger("db")


def build_connect_args(database_url: str) -> dict[str, Any]:
    connect_args: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        # dos firmas simultáneas compiten por el mismo archivo
        connect_args["timeout"] = settings.database_busy_timeout
    elif database_url.startswith("postgresql"):
        client_encoding = os.getenv("POSTGRES_CLIENT_ENCODING", "UTF8")
        connect_args["options"] = f"-c client_encoding={client_encoding}"
    return connect_args


engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
    connect_args=build_connect_args(settings.database_url),
)


def init_db() -> None:
    SQLModel.metadata.create_all(bind=engine)
    ensure_delegate_constraints(engine)


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


@contextmanager
def session_scope() -> Iterator[Session]:
    """Sesión para tareas fuera de una petición: confirma al salir o deshace ante error."""
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ensure_delegate_constraints(bind: Engine) -> list[str]:
    """
    Crea los índices de ``delegates`` que falten en bases creadas antes de
    que existieran. ``create_all`` no agrega índices a tablas ya presentes.

    Si hay titulares con más de un delegado vivo la creación falla y el
    error se propaga: esos datos deben corregirse a mano.
    """
    created: list[str] = []
    with bind.begin() as conn:
        inspector = inspect(conn)
        if "delegates" not in inspector.get_table_names():
            return created
        existing = {index["name"] for index in inspector.get_indexes("delegates")}
        for index in Delegate.__table__.indexes:
            if index.name in existing:
                continue
            logger.warning("Índice '%s' ausente en la tabla 'delegates'. Aplicando ajuste automático.", index.name)
            index.create(conn)
            created.append(index.name)
            logger.info("Índice '%s' creado en la tabla 'delegates'.", index.name)
    return created
