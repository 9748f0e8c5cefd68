from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.client import Config as BotoConfig

from visafirma.core.config import settings


def _determine_base_storage() -> Path:
    raw = os.getenv("VISAFIRMA_STORAGE") or settings.storage_base_path or "_storage"
    try:
        return Path(raw).expanduser().resolve()
    except OSError:
        return Path(raw)


def generate_artifact_name(original_filename: str | None = None) -> str:
    suffix = Path(original_filename or "").suffix.lower() or ".pdf"
    return f"{secrets.token_hex(16)}{suffix}"


def artifact_path(created_at: datetime, file_name: str, *, root: str | None = None) -> str:
    """
    Ruta canónica del artefacto de un documento: ``<root>/<año>/<nombre>``.
    El año sale de la fecha de creación del documento.
    """
    base = (root or settings.uploads_root or "uploads").strip("/")
    return f"{base}/{created_at.year}/{file_name}"


class ArtifactStore(Protocol):
    def put(self, data: bytes, path: str) -> None:
        ...

    def get(self, path: str) -> bytes:
        ...

    def delete(self, path: str) -> None:
        ...


@dataclass
class LocalStorage:
    base_dir: Path

    def __post_init__(self) -> None:
        try:
            self.base_dir = Path(self.base_dir).resolve()
        except OSError:
            self.base_dir = Path(self.base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        target = (self.base_dir / path.lstrip("/")).resolve()
        if target != self.base_dir and self.base_dir not in target.parents:
            raise ValueError(f"Ruta {path!r} fuera del almacenamiento configurado")
        return target

    def put(self, data: bytes, path: str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def get(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.exists():
            raise FileNotFoundError(f"Archivo {path!r} no encontrado en el almacenamiento configurado.")
        return target.read_bytes()

    def delete(self, path: str) -> None:
        self._resolve(path).unlink(missing_ok=True)


@dataclass
class S3Storage:
    bucket: str
    client: Any

    @staticmethod
    def _key(path: str) -> str:
        return path.strip("/")

    def put(self, data: bytes, path: str) -> None:
        self.client.put_object(Bucket=self.bucket, Key=self._key(path), Body=data)

    def get(self, path: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=self._key(path))
        except self.client.exceptions.NoSuchKey as exc:
            raise FileNotFoundError(f"Archivo {path!r} no encontrado en s3://{self.bucket}.") from exc
        body = response.get("Body")
        return body.read() if body else b""

    def delete(self, path: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=self._key(path))


def get_storage() -> ArtifactStore:
    # Una ruta local explícita tiene prioridad
    if os.getenv("VISAFIRMA_STORAGE"):
        return LocalStorage(base_dir=_determine_base_storage())

    if settings.s3_endpoint_url and settings.s3_access_key and settings.s3_secret_key and settings.s3_bucket_documents:
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            config=BotoConfig(signature_version="s3v4"),
            region_name=os.getenv("AWS_REGION", "us-east-1"),
        )
        return S3Storage(bucket=settings.s3_bucket_documents, client=client)

    return LocalStorage(base_dir=_determine_base_storage())
