from datetime import datetime
from typing import Any, List, Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from visafirma.models.document import SignerType, SignStatus
from visafirma.schemas.common import IDModel, Timestamped


class SignerCreate(BaseModel):
    rut: str = Field(min_length=1, max_length=32)
    order: int = Field(gt=0)
    type: SignerType = SignerType.FIRMADOR

    @field_validator("rut")
    @classmethod
    def normalize_rut(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("El RUT no puede estar vacío")
        return cleaned


class DocumentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    original_filename: str = Field(default="documento.pdf", max_length=255)
    signers: List[SignerCreate] = Field(min_length=1)


class SignDocumentInput(BaseModel):
    entity: str = Field(min_length=1, max_length=128)
    purpose: str = Field(min_length=1, max_length=128)
    is_attended: bool = False
    otp: str | None = Field(default=None, max_length=32)
    signer_name: str | None = Field(default=None, max_length=256)
    signer_position: str | None = Field(default=None, max_length=256)
    image_height: int | None = Field(default=None, gt=0)
    layout: str | None = None
    description: str = Field(default="Documento para firma", max_length=256)

    @model_validator(mode="after")
    def _require_otp_when_attended(self) -> "SignDocumentInput":
        if self.is_attended and not (self.otp and self.otp.strip()):
            raise ValueError("La firma atendida requiere OTP")
        return self


class DocumentFilters(BaseModel):
    start_date: datetime | None = None
    end_date: datetime | None = None
    name: str | None = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class SignatureRead(IDModel):
    document_id: UUID
    owner_rut: str
    signer_rut: str | None
    signer_order: int
    signer_type: SignerType
    is_signed: bool
    signed_at: datetime | None


class DocumentRead(IDModel, Timestamped):
    name: str
    file_name: str
    storage_path: str
    creator_rut: str
    is_fully_signed: bool


class DocumentDetail(DocumentRead):
    signatures: List[SignatureRead] = Field(default_factory=list)


class SignResult(BaseModel):
    message: str = "Documento firmado exitosamente"
    signature: SignatureRead
    is_fully_signed: bool
    metadata: dict[str, Any] = Field(default_factory=dict)


class DocumentSlotItem(BaseModel):
    document_id: UUID
    name: str
    file_name: str
    slot_id: UUID
    owner_rut: str
    signer_rut: str | None = None
    signer_type: SignerType
    signer_order: int
    signature_type: Literal["owner", "delegate"]
    is_signed: bool
    signed_at: datetime | None = None
    status: SignStatus
