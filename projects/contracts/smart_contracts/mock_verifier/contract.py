"""
MockVerifier Smart Contract — Switchable Proof Oracle
======================================================
Stands in for the circuit's Groth16 verifier on LocalNet and in tests. It
exposes the same ABI the registry calls and answers every proof with a
stored flag that the creator can flip.

Never deploy this next to a production registry: it accepts any proof while
the flag is set.
"""

import typing

from algopy import ARC4Contract, Global, Txn, arc4
from algopy.arc4 import abimethod


class MockVerifier(ARC4Contract):
    """Answers verify() with ``result`` (true on creation)."""

    def __init__(self) -> None:
        self.result = True

    @abimethod()
    def set_result(self, result: arc4.Bool) -> None:
        assert Txn.sender == Global.creator_address, "Unauthorized: only the creator may set the result"
        self.result = result.native

    @abimethod(readonly=True)
    def verify(
        self,
        p_a: arc4.StaticArray[arc4.UInt256, typing.Literal[2]],
        p_b: arc4.StaticArray[arc4.StaticArray[arc4.UInt256, typing.Literal[2]], typing.Literal[2]],
        p_c: arc4.StaticArray[arc4.UInt256, typing.Literal[2]],
        public_signals: arc4.StaticArray[arc4.UInt256, typing.Literal[1]],
    ) -> arc4.Bool:
        return arc4.Bool(self.result)
