from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo
import hashlib

from jose import jwt

from visafirma.core.config import settings


def compute_checksum(content: bytes, algorithm: str | None = None) -> str:
    """Checksum hexadecimal del artefacto, en el algoritmo que exige el proveedor."""
    name = (algorithm or settings.checksum_algorithm or "md5").lower()
    try:
        digest = hashlib.new(name)
    except ValueError as exc:
        raise ValueError(f"Algoritmo de checksum no soportado: {name}") from exc
    digest.update(content)
    return digest.hexdigest()


def format_provider_expiration(now: datetime | None = None, *, minutes: int | None = None) -> str:
    # Hora local del proveedor, sin offset: 2024-05-01T13:45:00
    tz = ZoneInfo(settings.signing_provider_timezone)
    current = now.astimezone(tz) if now else datetime.now(tz)
    expires = current + timedelta(minutes=minutes or settings.signing_provider_token_ttl_minutes)
    return expires.strftime("%Y-%m-%dT%H:%M:%S")


def create_provider_token(
    run: str,
    entity: str,
    purpose: str,
    *,
    now: datetime | None = None,
) -> str:
    to_encode: dict[str, Any] = {
        "run": run,
        "entity": entity,
        "purpose": purpose,
        "expiration": format_provider_expiration(now),
    }
    return jwt.encode(
        to_encode,
        settings.signing_provider_secret,
        algorithm=settings.signing_provider_algorithm,
    )

