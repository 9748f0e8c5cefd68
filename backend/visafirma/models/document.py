from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, Relationship

from visafirma.models.base import TimestampedModel, UUIDModel


class SignerType(str, Enum):
    VISADOR = "visador"
    FIRMADOR = "firmador"


class SignStatus(str, Enum):
    CAN_SIGN = "can_sign"
    NOT_YOUR_TURN = "not_your_turn"
    ALREADY_SIGNED = "already_signed"
    DELEGATE_CONFLICT = "delegate_conflict"


class Document(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "documents"

    name: str = Field(index=True)
    file_name: str = Field(max_length=255)
    storage_path: str
    creator_rut: str = Field(index=True, max_length=32)
    is_fully_signed: bool = Field(default=False)
    deleted_at: Optional[datetime] = Field(default=None, index=True)

    signatures: List["DocumentSignature"] = Relationship(
        back_populates="document",
        sa_relationship_kwargs={
            "cascade": "all, delete-orphan",
            "order_by": "DocumentSignature.signer_order",
        },
    )


class DocumentSignature(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "document_signatures"
    __table_args__ = (
        UniqueConstraint("document_id", "owner_rut", name="uq_document_signatures_owner"),
    )

    document_id: UUID = Field(foreign_key="documents.id", index=True)
    owner_rut: str = Field(index=True, max_length=32)
    # quien efectivamente firmó (titular o su delegado)
    signer_rut: Optional[str] = Field(default=None, index=True, max_length=32)
    signer_order: int = Field(ge=1)
    signer_type: SignerType = Field(default=SignerType.FIRMADOR)
    is_signed: bool = Field(default=False)
    signed_at: Optional[datetime] = Field(default=None)

    document: Document = Relationship(back_populates="signatures")
