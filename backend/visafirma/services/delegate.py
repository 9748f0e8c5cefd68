from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from visafirma.core.exceptions import DelegateStateError, DuplicateDelegateError, NotFoundError
from visafirma.core.logging_setup import get_logger
from visafirma.models.delegate import Delegate, DelegateStatus

logger = get_logger("delegates")

DUPLICATE_DELEGATE_MESSAGE = "Solo puedes delegar a una persona. Elimina la anterior para agregar una nueva."


class DelegateService:
    """Registro de delegaciones: a lo sumo un delegado vivo por titular."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _live_delegate(self, owner_rut: str, *, lock: bool = False) -> Delegate | None:
        statement = (
            select(Delegate)
            .where(Delegate.owner_rut == owner_rut)
            .where(Delegate.status != DelegateStatus.REVOKED)
        )
        if lock:
            statement = statement.with_for_update()
        return self.session.exec(statement).first()

    def _require_live(self, owner_rut: str) -> Delegate:
        delegate = self._live_delegate(owner_rut, lock=True)
        if not delegate:
            raise NotFoundError(f"No se encontró un delegado para el RUT {owner_rut}")
        return delegate

    def appoint(self, owner_rut: str, delegate_rut: str) -> Delegate:
        if self._live_delegate(owner_rut, lock=True):
            raise DuplicateDelegateError(DUPLICATE_DELEGATE_MESSAGE)

        delegate = self.session.exec(
            select(Delegate)
            .where(Delegate.owner_rut == owner_rut)
            .where(Delegate.delegate_rut == delegate_rut)
            .where(Delegate.status == DelegateStatus.REVOKED)
            .order_by(Delegate.created_at.desc())
        ).first()

        now = datetime.utcnow()
        if delegate is None:
            delegate = Delegate(owner_rut=owner_rut, delegate_rut=delegate_rut, created_at=now)
        else:
            delegate.created_at = now
            delegate.touch(now)
            logger.info("Reviviendo delegado %s para titular %s", delegate_rut, owner_rut)

        delegate.status = DelegateStatus.INACTIVE
        delegate.revoked_at = None
        delegate.expires_at = None
        self.session.add(delegate)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            logger.warning("Designación concurrente rechazada para titular %s", owner_rut)
            raise DuplicateDelegateError(DUPLICATE_DELEGATE_MESSAGE) from exc
        self.session.refresh(delegate)
        logger.info("Delegado %s designado para titular %s", delegate_rut, owner_rut)
        return delegate

    def revoke(self, owner_rut: str) -> Delegate:
        delegate = self._require_live(owner_rut)
        delegate.status = DelegateStatus.REVOKED
        delegate.revoked_at = delegate.touch()
        self.session.add(delegate)
        self.session.commit()
        self.session.refresh(delegate)
        logger.info("Delegado %s revocado para titular %s", delegate.delegate_rut, owner_rut)
        return delegate

    def activate(self, owner_rut: str, *, expires_at: datetime | None = None) -> Delegate:
        delegate = self._require_live(owner_rut)
        if delegate.is_active:
            raise DelegateStateError("El delegado ya está activo")
        delegate.status = DelegateStatus.ACTIVE
        delegate.expires_at = expires_at
        delegate.touch()
        self.session.add(delegate)
        self.session.commit()
        self.session.refresh(delegate)
        logger.info("Delegado %s activado para titular %s", delegate.delegate_rut, owner_rut)
        return delegate

    def deactivate(self, owner_rut: str) -> Delegate:
        delegate = self._require_live(owner_rut)
        if delegate.status == DelegateStatus.INACTIVE:
            raise DelegateStateError("El delegado ya está inactivo")
        delegate.status = DelegateStatus.INACTIVE
        delegate.touch()
        self.session.add(delegate)
        self.session.commit()
        self.session.refresh(delegate)
        logger.info("Delegado %s desactivado para titular %s", delegate.delegate_rut, owner_rut)
        return delegate

    def active_delegates_for(self, delegate_rut: str) -> list[Delegate]:
        rows = self.session.exec(
            select(Delegate)
            .where(Delegate.delegate_rut == delegate_rut)
            .where(Delegate.status == DelegateStatus.ACTIVE)
        ).all()
        return [row for row in rows if row.is_active]

    def delegated_owner_ruts(self, delegate_rut: str) -> set[str]:
        return {row.owner_rut for row in self.active_delegates_for(delegate_rut)}

    def get_delegate(self, owner_rut: str) -> Delegate:
        delegate = self._live_delegate(owner_rut)
        if not delegate:
            raise NotFoundError("No tienes un delegado")
        return delegate

    def list_delegates(self) -> list[Delegate]:
        return list(
            self.session.exec(
                select(Delegate)
                .where(Delegate.status != DelegateStatus.REVOKED)
                .order_by(Delegate.created_at.desc())
            ).all()
        )
