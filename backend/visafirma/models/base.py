from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel


class TimestampedModel(SQLModel):
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)
    updated_at: datetime | None = Field(default=None, nullable=True)

    def touch(self, at: datetime | None = None) -> datetime:
        """Marca la fila como modificada; retorna el instante usado."""
        self.updated_at = at or datetime.utcnow()
        return self.updated_at


class UUIDModel(SQLModel):
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
