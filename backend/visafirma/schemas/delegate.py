from datetime import datetime

from visafirma.models.delegate import DelegateStatus
from visafirma.schemas.common import IDModel, Timestamped


class DelegateRead(IDModel, Timestamped):
    owner_rut: str
    delegate_rut: str
    status: DelegateStatus
    is_active: bool
    is_deleted: bool
    expires_at: datetime | None = None
    revoked_at: datetime | None = None
