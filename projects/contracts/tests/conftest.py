"""Shared fixtures for the ProofMark contract tests."""

import typing
from collections.abc import Callable, Iterator

import pytest
from algopy import Account, arc4
from algopy_testing import AlgopyTestContext, algopy_testing_context

from smart_contracts.proofmark.contract import ProofMark

G1 = arc4.StaticArray[arc4.UInt256, typing.Literal[2]]
G2 = arc4.StaticArray[arc4.StaticArray[arc4.UInt256, typing.Literal[2]], typing.Literal[2]]
Signals = arc4.StaticArray[arc4.UInt256, typing.Literal[1]]

VERIFIER_APP_ID = 1001
ZERO_ADDRESS = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAY5HFKQ"


class VerifierStub:
    """
    Replaces arc4.abi_call so the verifier app answers without an inner
    transaction. Flip ``result`` to make the next proof fail.
    """

    def __init__(self) -> None:
        self.result = True
        self.calls: list[tuple] = []

    def __call__(self, method, *args, app_id, **kwargs):
        self.calls.append((app_id, args))
        return arc4.Bool(self.result), None


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture()
def context() -> Iterator[AlgopyTestContext]:
    """Provides a fresh AlgopyTestContext for each test."""
    with algopy_testing_context() as ctx:
        yield ctx


@pytest.fixture()
def verifier(monkeypatch) -> VerifierStub:
    stub = VerifierStub()
    monkeypatch.setattr(arc4, "abi_call", stub)
    return stub


@pytest.fixture()
def emitted(monkeypatch) -> list:
    """Every ARC-28 event struct the contract logs, in order."""
    events: list = []
    monkeypatch.setattr(arc4, "emit", lambda event, *args: events.append(event))
    return events


@pytest.fixture()
def owner(context: AlgopyTestContext) -> Account:
    return context.default_sender


@pytest.fixture()
def uploader(context: AlgopyTestContext) -> Account:
    return context.any.account()


@pytest.fixture()
def outsider(context: AlgopyTestContext) -> Account:
    return context.any.account()


@pytest.fixture()
def verifier_app_id() -> int:
    return VERIFIER_APP_ID


@pytest.fixture()
def zero_address() -> arc4.Address:
    return arc4.Address(ZERO_ADDRESS)


@pytest.fixture()
def as_sender(context: AlgopyTestContext) -> Callable:
    """``with as_sender(account): contract.method(...)`` runs the call as ``account``."""

    def _as_sender(account: Account):
        return context.txn.create_group(active_txn_overrides={"sender": account})

    return _as_sender


@pytest.fixture()
def contract(context: AlgopyTestContext, verifier: VerifierStub, emitted: list) -> ProofMark:  # noqa: ARG001
    """A created ProofMark registry owned by the default sender."""
    registry = ProofMark()
    registry.create(arc4.UInt64(VERIFIER_APP_ID))
    return registry


@pytest.fixture()
def enrolled(contract: ProofMark, uploader: Account) -> Account:
    contract.add_uploader(arc4.Address(uploader))
    return uploader


@pytest.fixture()
def proof() -> Callable[[int], tuple]:
    """Build (pA, pB, pC, publicSignals) as ARC-4 values for a digest."""

    def _proof(digest: int, salt: int = 0) -> tuple:
        return (
            G1(arc4.UInt256(1 + salt), arc4.UInt256(2)),
            G2(G1(arc4.UInt256(3), arc4.UInt256(4)), G1(arc4.UInt256(5), arc4.UInt256(6))),
            G1(arc4.UInt256(7), arc4.UInt256(8)),
            Signals(arc4.UInt256(digest)),
        )

    return _proof
