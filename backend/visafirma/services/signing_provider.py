from __future__ import annotations

import base64
import binascii
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

import httpx

from visafirma.core.config import settings
from visafirma.core.exceptions import ExternalProviderError
from visafirma.core.logging_setup import get_logger
from visafirma.schemas.document import SignDocumentInput
from visafirma.utils.security import compute_checksum, create_provider_token

logger = get_logger("provider")

_OK_STATUSES = {"OK", "SIGNED", "SUCCESS"}


@dataclass
class ProviderResult:
    success: bool
    signed_content: bytes = b""
    signed_checksum: str | None = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    request_id: Any = None
    error: str | None = None


class SigningProvider(Protocol):
    def sign(
        self,
        *,
        content: bytes,
        checksum: str,
        run: str,
        inputs: SignDocumentInput,
    ) -> ProviderResult:
        ...


class SigningProviderClient:
    """Cliente HTTP del servicio externo de firma electrónica avanzada."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        api_token_key: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._url = (base_url or settings.resolved_provider_url()).rstrip("/")
        if not self._url:
            raise ExternalProviderError("URL del servicio de firma no configurada.")
        self._api_token_key = api_token_key or settings.signing_provider_api_token_key
        self._timeout = timeout_seconds or settings.signing_provider_timeout_seconds or 30.0

    def build_payload(self, *, content: bytes, checksum: str, run: str, inputs: SignDocumentInput) -> dict[str, Any]:
        file_entry: dict[str, Any] = {
            "description": inputs.description,
            "checksum": checksum,
            "content": base64.b64encode(content).decode("ascii"),
            "content-type": "application/pdf",
        }
        if inputs.layout:
            file_entry["layout"] = inputs.layout
        return {
            "api_token_key": self._api_token_key,
            "token": create_provider_token(run, inputs.entity, inputs.purpose),
            "files": [file_entry],
        }

    @staticmethod
    def build_headers(inputs: SignDocumentInput) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if inputs.is_attended and inputs.otp:
            headers["OTP"] = inputs.otp
        return headers

    def _request(self, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        try:
            response = httpx.request(
                "POST",
                self._url,
                json=payload,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise ExternalProviderError(
                f"Tiempo de espera agotado con el servicio de firma ({self._timeout}s)"
            ) from exc
        except httpx.RequestError as exc:
            raise ExternalProviderError(f"Error al conectar con el servicio de firma: {exc}") from exc

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {"error": response.text}
            if not isinstance(body, dict):
                body = {"error": body}
            message = str(body.get("error") or body.get("message") or "Error en el servicio de firma")
            raise ExternalProviderError(
                f"Error en la firma digital: {message}",
                details=body,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ExternalProviderError("Respuesta inválida del servicio de firma") from exc
        if not isinstance(data, dict):
            raise ExternalProviderError("Respuesta inválida del servicio de firma", details={"raw": data})
        return data

    @staticmethod
    def parse_response(data: dict[str, Any]) -> ProviderResult:
        metadata = data.get("metadata") or {}
        request_id = data.get("idSolicitud")
        if metadata.get("otpExpired"):
            return ProviderResult(success=False, metadata=metadata, request_id=request_id, error="OTP expirado")

        files = data.get("files")
        if not files or not isinstance(files, list):
            raise ExternalProviderError("Respuesta inválida del servicio de firma", details=data)

        signed = files[0]
        status = str(signed.get("status") or "").upper()
        if status and status not in _OK_STATUSES:
            return ProviderResult(
                success=False,
                metadata=metadata,
                request_id=request_id,
                error=f"El servicio de firma rechazó el documento ({status})",
            )
        try:
            content = base64.b64decode(signed.get("content") or "", validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ExternalProviderError("Contenido firmado con formato inválido") from exc
        if not content:
            raise ExternalProviderError("El servicio de firma no devolvió contenido firmado", details=data)

        return ProviderResult(
            success=True,
            signed_content=content,
            signed_checksum=signed.get("checksum_signed"),
            metadata=metadata,
            request_id=request_id,
        )

    def sign(
        self,
        *,
        content: bytes,
        checksum: str,
        run: str,
        inputs: SignDocumentInput,
    ) -> ProviderResult:
        payload = self.build_payload(content=content, checksum=checksum, run=run, inputs=inputs)
        data = self._request(payload, self.build_headers(inputs))
        result = self.parse_response(data)
        logger.info(
            "Servicio de firma respondió success=%s solicitud=%s run=%s",
            result.success,
            result.request_id,
            run,
        )
        return result


class MockSigningProvider:
    """Proveedor simulado para desarrollo: agrega una marca al contenido."""

    def sign(
        self,
        *,
        content: bytes,
        checksum: str,
        run: str,
        inputs: SignDocumentInput,
    ) -> ProviderResult:
        signed = content + f"\n%% Firmado por {run}".encode("utf-8")
        return ProviderResult(
            success=True,
            signed_content=signed,
            signed_checksum=compute_checksum(signed),
            metadata={
                "signerName": inputs.signer_name or f"Firmante {run}",
                "signerRut": run,
                "signatureDate": datetime.utcnow().isoformat(),
                "signatureType": "ADVANCED",
                "certificateSerialNumber": secrets.token_hex(8).upper(),
                "certificateIssuer": "Autoridad de Certificación Simulada",
            },
            request_id=secrets.randbelow(1_000_000),
        )


def get_signing_provider(base_url: Optional[str] = None) -> SigningProvider:
    if settings.signing_provider_mock:
        logger.warning("Usando proveedor de firma simulado")
        return MockSigningProvider()
    return SigningProviderClient(base_url)
