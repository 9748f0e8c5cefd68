from dataclasses import dataclass

from visafirma.models.document import SignerType, SignStatus
from visafirma.services.sign_order import (
    blocking_slots,
    evaluate_slot,
    is_turn,
    order_violation,
    resolve_slot,
)


@dataclass
class Slot:
    owner_rut: str
    signer_order: int
    signer_type: SignerType
    is_signed: bool = False
    signer_rut: str | None = None


def _ledger() -> list[Slot]:
    return [
        Slot("v1", 1, SignerType.VISADOR),
        Slot("v2", 2, SignerType.VISADOR),
        Slot("f1", 3, SignerType.FIRMADOR),
        Slot("f2", 4, SignerType.FIRMADOR),
    ]


def _sign(slot: Slot, rut: str | None = None) -> None:
    slot.is_signed = True
    slot.signer_rut = rut or slot.owner_rut


def test_firmador_waits_for_every_visador() -> None:
    v1, v2, f1, f2 = slots = _ledger()

    assert is_turn(slots, v1)
    assert not is_turn(slots, v2)
    assert not is_turn(slots, f1)

    _sign(v1)
    assert is_turn(slots, v2)
    assert not is_turn(slots, f1)
    assert order_violation(slots, f1) == "Todos los visadores deben firmar antes que los firmadores"

    _sign(v2)
    assert is_turn(slots, f1)
    assert not is_turn(slots, f2)
    assert order_violation(slots, f2) == "Hay firmas pendientes de su mismo tipo con orden anterior"

    _sign(f1)
    assert is_turn(slots, f2)


def test_visador_order_is_irrelevant_across_phases() -> None:
    # un visador de orden alto igual bloquea a un firmador de orden bajo
    visador = Slot("v", 10, SignerType.VISADOR)
    firmador = Slot("f", 1, SignerType.FIRMADOR)

    assert blocking_slots([visador, firmador], firmador) == [visador]


def test_equal_orders_are_concurrent() -> None:
    a = Slot("a", 1, SignerType.FIRMADOR)
    b = Slot("b", 1, SignerType.FIRMADOR)
    c = Slot("c", 2, SignerType.FIRMADOR)
    slots = [a, b, c]

    assert is_turn(slots, a)
    assert is_turn(slots, b)
    _sign(a)
    assert not is_turn(slots, c)
    _sign(b)
    assert is_turn(slots, c)


def test_missing_phase_skips_gating() -> None:
    only_firmadores = [Slot("a", 1, SignerType.FIRMADOR), Slot("b", 2, SignerType.FIRMADOR)]
    only_visadores = [Slot("a", 1, SignerType.VISADOR), Slot("b", 2, SignerType.VISADOR)]

    assert is_turn(only_firmadores, only_firmadores[0])
    assert is_turn(only_visadores, only_visadores[0])
    assert not is_turn(only_visadores, only_visadores[1])


def test_evaluate_reports_already_signed_for_actor() -> None:
    v1, v2, f1, _ = slots = _ledger()
    _sign(v1)

    assert evaluate_slot(slots, v1, "v1", set()) == SignStatus.ALREADY_SIGNED
    assert evaluate_slot(slots, v2, "v2", set()) == SignStatus.CAN_SIGN
    assert evaluate_slot(slots, f1, "f1", set()) == SignStatus.NOT_YOUR_TURN


def test_evaluate_reports_delegate_conflict() -> None:
    slots = _ledger()
    v2 = slots[1]

    # v2 es titular y además delegado de f1, que también tiene firma pendiente
    assert evaluate_slot(slots, v2, "v2", {"f1"}) == SignStatus.DELEGATE_CONFLICT


def test_no_conflict_when_delegated_owner_already_signed() -> None:
    v1, v2, _, _ = slots = _ledger()
    _sign(v1)

    assert evaluate_slot(slots, v2, "v2", {"v1"}) == SignStatus.CAN_SIGN


def test_resolve_prefers_own_slot() -> None:
    slots = _ledger()

    resolution = resolve_slot(slots, "v1", set())

    assert resolution.slot is slots[0]
    assert resolution.status == SignStatus.CAN_SIGN
    assert resolution.via_delegation is False


def test_resolve_uses_delegation_when_actor_has_no_slot() -> None:
    slots = _ledger()

    resolution = resolve_slot(slots, "x", {"f2", "v1"})

    assert resolution.slot is slots[0]
    assert resolution.status == SignStatus.CAN_SIGN
    assert resolution.via_delegation is True


def test_resolve_delegation_falls_back_to_first_when_none_in_turn() -> None:
    slots = _ledger()

    resolution = resolve_slot(slots, "x", {"f2", "f1"})

    assert resolution.slot is slots[2]
    assert resolution.status == SignStatus.NOT_YOUR_TURN


def test_resolve_not_eligible() -> None:
    resolution = resolve_slot(_ledger(), "nobody", set())

    assert not resolution.eligible
    assert resolution.status is None


def test_resolve_short_circuits_when_actor_signed_as_delegate() -> None:
    slots = _ledger()
    _sign(slots[0], rut="x")

    resolution = resolve_slot(slots, "x", {"v2"})

    assert resolution.slot is slots[0]
    assert resolution.status == SignStatus.ALREADY_SIGNED
