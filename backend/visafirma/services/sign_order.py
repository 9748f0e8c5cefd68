"""
Reglas de orden de firma.

Las firmas de un documento se agrupan en fases ordenadas (visadores y luego
firmadores). Ninguna firma de una fase puede completarse mientras quede una
firma pendiente en una fase anterior; dentro de la misma fase, una firma con
``signer_order = n`` espera a todas las pendientes con orden menor. Firmas con
el mismo orden son concurrentes.

Este módulo no toca la base de datos: lo usan tanto el orquestador de firma
como la consulta de pendientes, de modo que ambos decidan exactamente igual.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Collection, Iterable, Protocol, Sequence

from visafirma.models.document import SignerType, SignStatus

PHASES: tuple[SignerType, ...] = (SignerType.VISADOR, SignerType.FIRMADOR)


class SlotLike(Protocol):
    owner_rut: str
    signer_rut: str | None
    signer_order: int
    signer_type: SignerType
    is_signed: bool


def phase_index(signer_type: SignerType | str) -> int:
    return PHASES.index(SignerType(signer_type))


def sort_key(slot: SlotLike) -> tuple[int, int]:
    return phase_index(slot.signer_type), slot.signer_order


def blocking_slots(slots: Iterable[SlotLike], candidate: SlotLike) -> list[SlotLike]:
    """Firmas pendientes que deben completarse antes que ``candidate``."""
    phase = phase_index(candidate.signer_type)
    blockers: list[SlotLike] = []
    for slot in slots:
        if slot is candidate or slot.is_signed:
            continue
        other_phase = phase_index(slot.signer_type)
        if other_phase < phase:
            blockers.append(slot)
        elif other_phase == phase and slot.signer_order < candidate.signer_order:
            blockers.append(slot)
    return blockers


def order_violation(slots: Sequence[SlotLike], candidate: SlotLike) -> str | None:
    blockers = blocking_slots(slots, candidate)
    if not blockers:
        return None
    phase = phase_index(candidate.signer_type)
    if any(phase_index(slot.signer_type) < phase for slot in blockers):
        earlier = PHASES[min(phase_index(slot.signer_type) for slot in blockers)]
        return f"Todos los {earlier.value}es deben firmar antes que los {candidate.signer_type.value}es"
    return "Hay firmas pendientes de su mismo tipo con orden anterior"


def is_turn(slots: Sequence[SlotLike], candidate: SlotLike) -> bool:
    return not blocking_slots(slots, candidate)


def has_signed(slots: Iterable[SlotLike], actor_rut: str) -> bool:
    return any(slot.is_signed and slot.signer_rut == actor_rut for slot in slots)


def own_pending_slot(slots: Iterable[SlotLike], actor_rut: str) -> SlotLike | None:
    return next((slot for slot in slots if not slot.is_signed and slot.owner_rut == actor_rut), None)


def delegated_pending_slots(
    slots: Iterable[SlotLike],
    actor_rut: str,
    delegated_owner_ruts: Collection[str],
) -> list[SlotLike]:
    pending = [
        slot
        for slot in slots
        if not slot.is_signed and slot.owner_rut != actor_rut and slot.owner_rut in delegated_owner_ruts
    ]
    return sorted(pending, key=sort_key)


def has_delegate_conflict(
    slots: Sequence[SlotLike],
    actor_rut: str,
    delegated_owner_ruts: Collection[str],
) -> bool:
    return own_pending_slot(slots, actor_rut) is not None and bool(
        delegated_pending_slots(slots, actor_rut, delegated_owner_ruts)
    )


def evaluate_slot(
    slots: Sequence[SlotLike],
    slot: SlotLike,
    actor_rut: str,
    delegated_owner_ruts: Collection[str],
) -> SignStatus:
    """Estado accionable de ``slot`` para ``actor_rut``."""
    if has_signed(slots, actor_rut) or slot.is_signed:
        return SignStatus.ALREADY_SIGNED
    if has_delegate_conflict(slots, actor_rut, delegated_owner_ruts):
        return SignStatus.DELEGATE_CONFLICT
    return SignStatus.CAN_SIGN if is_turn(slots, slot) else SignStatus.NOT_YOUR_TURN


@dataclass(frozen=True)
class SlotResolution:
    slot: SlotLike | None
    status: SignStatus | None
    via_delegation: bool = False

    @property
    def eligible(self) -> bool:
        return self.slot is not None


def resolve_slot(
    slots: Sequence[SlotLike],
    actor_rut: str,
    delegated_owner_ruts: Collection[str],
) -> SlotResolution:
    """
    Determina qué firma correspondería a ``actor_rut``.

    Primero la propia; si no tiene, la de algún titular que lo haya delegado.
    Entre varias delegadas se prefiere la que ya está en turno.
    """
    if has_signed(slots, actor_rut):
        signed = next(slot for slot in slots if slot.is_signed and slot.signer_rut == actor_rut)
        return SlotResolution(slot=signed, status=SignStatus.ALREADY_SIGNED)

    own = own_pending_slot(slots, actor_rut)
    if own is not None:
        return SlotResolution(
            slot=own,
            status=evaluate_slot(slots, own, actor_rut, delegated_owner_ruts),
        )

    delegated = delegated_pending_slots(slots, actor_rut, delegated_owner_ruts)
    if not delegated:
        return SlotResolution(slot=None, status=None)
    candidate = next((slot for slot in delegated if is_turn(slots, slot)), delegated[0])
    return SlotResolution(
        slot=candidate,
        status=evaluate_slot(slots, candidate, actor_rut, delegated_owner_ruts),
        via_delegation=True,
    )
