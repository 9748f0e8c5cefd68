from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Index, text
from sqlmodel import Field

from visafirma.models.base import TimestampedModel, UUIDModel


class DelegateStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    REVOKED = "revoked"


# Los enums se persisten por nombre de miembro.
LIVE_DELEGATE_CLAUSE = "status <> 'REVOKED'"


class Delegate(UUIDModel, TimestampedModel, table=True):
    """
    Relación titular -> delegado.

    Una fila REVOKED es histórica; por titular existe a lo sumo una fila en
    cualquier otro estado ("viva"), garantizado por ``uq_delegates_live_owner``.
    """

    __tablename__ = "delegates"
    __table_args__ = (
        Index(
            "uq_delegates_live_owner",
            "owner_rut",
            unique=True,
            sqlite_where=text(LIVE_DELEGATE_CLAUSE),
            postgresql_where=text(LIVE_DELEGATE_CLAUSE),
        ),
    )

    owner_rut: str = Field(index=True, max_length=32)
    delegate_rut: str = Field(index=True, max_length=32)
    status: DelegateStatus = Field(default=DelegateStatus.INACTIVE, index=True)
    expires_at: Optional[datetime] = Field(default=None)
    revoked_at: Optional[datetime] = Field(default=None)

    @property
    def is_active(self) -> bool:
        # una delegación vencida deja de otorgar permisos aunque siga en ACTIVE
        return self.status == DelegateStatus.ACTIVE and not self.is_expired()

    @property
    def is_deleted(self) -> bool:
        return self.status == DelegateStatus.REVOKED

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.utcnow())
