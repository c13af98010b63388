"""
ProofMark Smart Contract — Zero-Knowledge File Registry
=========================================================
Deployed on Algorand via AlgoKit + Puya compiler.

An uploader proves knowledge of a file without revealing it, and the registry
records "this account claimed this digest at this time" exactly once per
digest. The proof is checked by a separate verifier application whose ID is
fixed when the registry is created.

Architecture:
  - Box storage:  per-digest records keyed by the 32-byte digest (namespace: "rec_")
  - Index boxes:  digest at each insertion position            (namespace: "idx_")
  - Role boxes:   one flag per enrolled uploader account       (namespace: "upl_")
  - Global state: owner, verifier app ID, registration counter

Per digest the state machine is Unregistered -> Registered, and Registered is
terminal: records are never updated or deleted.

Invariants:
  - file_count == number of "rec_" boxes == number of "idx_" boxes
  - idx_[i] for i < file_count names a digest that has a "rec_" box
  - a failed call is rejected by the AVM as a whole: no box, no counter
    change and no event log survive it

ARC Standards:
  - ARC-4:  ABI methods and structs
  - ARC-28: FileRegistered / UploaderAdded / UploaderRemoved /
            OwnershipTransferred event logs (the audit trail)
"""

import typing

from algopy import (
    Account,
    ARC4Contract,
    BoxMap,
    Global,
    Txn,
    UInt64,
    arc4,
    subroutine,
)
from algopy.arc4 import abimethod


# ─────────────────────────────────────────────────────────────────────────────
# ARC-4 Data Structures
# ─────────────────────────────────────────────────────────────────────────────


class FileRecord(arc4.Struct):
    """
    ARC-4 encoded registration record for one content digest.

    Field encoding:
        uploader  → arc4.Address (fixed 32 bytes, the registering account)
        timestamp → arc4.UInt64  (fixed 8 bytes, Unix seconds of the block)
        file_name → arc4.String  (variable length, caller-supplied, never interpreted)
    """

    uploader: arc4.Address
    timestamp: arc4.UInt64
    file_name: arc4.String


class FileRegistered(arc4.Struct):
    digest: arc4.UInt256
    uploader: arc4.Address
    file_name: arc4.String
    timestamp: arc4.UInt64


class UploaderAdded(arc4.Struct):
    account: arc4.Address


class UploaderRemoved(arc4.Struct):
    account: arc4.Address


class OwnershipTransferred(arc4.Struct):
    """The zero address stands for "no owner" on either side."""

    previous: arc4.Address
    new: arc4.Address


# ─────────────────────────────────────────────────────────────────────────────
# Verifier interface
# ─────────────────────────────────────────────────────────────────────────────


class ProofVerifier(arc4.ARC4Client):
    """
    ABI of the external Groth16 verifier application.

    verify(uint256[2],uint256[2][2],uint256[2],uint256[1])bool
    Pure: no state, no calls back into the registry.
    """

    @abimethod(readonly=True)
    def verify(
        self,
        p_a: arc4.StaticArray[arc4.UInt256, typing.Literal[2]],
        p_b: arc4.StaticArray[arc4.StaticArray[arc4.UInt256, typing.Literal[2]], typing.Literal[2]],
        p_c: arc4.StaticArray[arc4.UInt256, typing.Literal[2]],
        public_signals: arc4.StaticArray[arc4.UInt256, typing.Literal[1]],
    ) -> arc4.Bool: ...


# ─────────────────────────────────────────────────────────────────────────────
# Main Contract
# ─────────────────────────────────────────────────────────────────────────────


class ProofMark(ARC4Contract):
    """
    ProofMark — proof-gated content registry.

    Registration flow:
      1. Sender must hold the uploader role          → "Unauthorized"
      2. Digest is publicSignals[0]                  → fixed-width by the ABI
      3. Digest must not be registered yet           → "AlreadyRegistered"
      4. The verifier app must accept the proof      → "InvalidProof"
      5. Record box + index box are written, counter incremented
      6. FileRegistered is logged last

    Design decisions:
      • The duplicate check runs before the verifier call so a known duplicate
        never pays for a pairing check.
      • The AVM runs application calls one at a time, so nothing can land
        between the uniqueness check and the write.
      • The owner is not implicitly an uploader; it enrolls itself like anyone.
      • Box MBR is paid from the app account, which the deployer funds.
    """

    # Global state, visible to anyone reading the app on-chain.
    owner: Account
    verifier_app_id: UInt64
    file_count: UInt64

    def __init__(self) -> None:
        """Declare box maps and zero the counter on first deployment."""
        self.records = BoxMap(arc4.UInt256, FileRecord, key_prefix=b"rec_")
        self.digests = BoxMap(UInt64, arc4.UInt256, key_prefix=b"idx_")
        self.uploaders = BoxMap(Account, arc4.Bool, key_prefix=b"upl_")
        self.file_count = UInt64(0)

    @abimethod(create="require")
    def create(self, verifier_app_id: arc4.UInt64) -> None:
        """
        Create the registry, owned by the creating account.

        Args:
            verifier_app_id: App ID of the Groth16 verifier for the file circuit.
                             Fixed for the lifetime of the registry.
        """
        assert verifier_app_id.native != UInt64(0), "InvalidArgument: verifier app ID must be set"
        self.verifier_app_id = verifier_app_id.native
        self.owner = Txn.sender
        arc4.emit(
            OwnershipTransferred(
                previous=arc4.Address(Global.zero_address),
                new=arc4.Address(Txn.sender),
            )
        )

    # ─────────────────────────────────────────────────────────────────────
    # Access control
    # ─────────────────────────────────────────────────────────────────────

    @subroutine
    def _only_owner(self) -> None:
        assert Txn.sender == self.owner, "Unauthorized: sender is not the owner"

    @abimethod()
    def add_uploader(self, account: arc4.Address) -> None:
        """Enroll ``account`` as an uploader. Owner only; re-adding is a no-op that still logs."""
        self._only_owner()
        assert account.native != Global.zero_address, "InvalidArgument: uploader must not be the zero address"
        self.uploaders[account.native] = arc4.Bool(True)
        arc4.emit(UploaderAdded(account=arc4.Address(account.native)))

    @abimethod()
    def remove_uploader(self, account: arc4.Address) -> None:
        """Revoke ``account``. Owner only; removing a non-member is a no-op that still logs."""
        self._only_owner()
        if account.native in self.uploaders:
            del self.uploaders[account.native]
        arc4.emit(UploaderRemoved(account=arc4.Address(account.native)))

    @abimethod(readonly=True)
    def is_uploader(self, account: arc4.Address) -> arc4.Bool:
        return arc4.Bool(account.native in self.uploaders)

    @abimethod()
    def transfer_ownership(self, new_owner: arc4.Address) -> None:
        self._only_owner()
        assert new_owner.native != Global.zero_address, "InvalidArgument: new owner must not be the zero address"
        previous = arc4.Address(self.owner)
        self.owner = new_owner.native
        arc4.emit(OwnershipTransferred(previous=previous, new=arc4.Address(new_owner.native)))

    @abimethod()
    def renounce_ownership(self) -> None:
        """Leave the registry without an owner. Uploader management is frozen afterwards."""
        self._only_owner()
        previous = arc4.Address(self.owner)
        self.owner = Global.zero_address
        arc4.emit(OwnershipTransferred(previous=previous, new=arc4.Address(Global.zero_address)))

    @abimethod(readonly=True)
    def get_owner(self) -> arc4.Address:
        return arc4.Address(self.owner)

    # ─────────────────────────────────────────────────────────────────────
    # Registration
    # ─────────────────────────────────────────────────────────────────────

    @abimethod()
    def register_file(
        self,
        p_a: arc4.StaticArray[arc4.UInt256, typing.Literal[2]],
        p_b: arc4.StaticArray[arc4.StaticArray[arc4.UInt256, typing.Literal[2]], typing.Literal[2]],
        p_c: arc4.StaticArray[arc4.UInt256, typing.Literal[2]],
        public_signals: arc4.StaticArray[arc4.UInt256, typing.Literal[1]],
        file_name: arc4.String,
    ) -> arc4.UInt256:
        """
        Register the content digest attested by a Groth16 proof.

        Args:
            p_a, p_b, p_c  : Proof components, passed to the verifier unchanged.
            public_signals : One field element; its value is the content digest.
            file_name      : Opaque label stored with the record.

        Returns:
            The registered digest.

        Errors:
            • "Unauthorized"      — sender is not an uploader
            • "AlreadyRegistered" — the digest already has a record
            • "InvalidProof"      — the verifier app returned false

        The outer call must carry the inner verifier call's fee
        (fee = 2 * min_fee) and reference the verifier app.
        """
        assert Txn.sender in self.uploaders, "Unauthorized: sender is not an uploader"

        digest = public_signals[0]
        assert digest not in self.records, "AlreadyRegistered: content digest is already registered"

        accepted, _verify_txn = arc4.abi_call(
            ProofVerifier.verify,
            p_a,
            p_b,
            p_c,
            public_signals,
            app_id=self.verifier_app_id,
            fee=0,
        )
        assert accepted.native, "InvalidProof: proof did not verify"

        timestamp = arc4.UInt64(Global.latest_timestamp)
        self.records[digest] = FileRecord(
            uploader=arc4.Address(Txn.sender),
            timestamp=timestamp,
            file_name=file_name,
        )
        self.digests[self.file_count] = digest
        self.file_count += UInt64(1)

        arc4.emit(
            FileRegistered(
                digest=digest,
                uploader=arc4.Address(Txn.sender),
                file_name=file_name,
                timestamp=timestamp,
            )
        )
        return digest

    # ─────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────

    @abimethod(readonly=True)
    def record_exists(self, digest: arc4.UInt256) -> arc4.Bool:
        return arc4.Bool(digest in self.records)

    @abimethod(readonly=True)
    def get_file_record(self, digest: arc4.UInt256) -> FileRecord:
        """Return the record for ``digest``. Fails with "NotFound" when there is none."""
        assert digest in self.records, "NotFound: no record for this digest"
        return self.records[digest].copy()

    @abimethod(readonly=True)
    def get_digest_at(self, index: arc4.UInt64) -> arc4.UInt256:
        """Digest at insertion position ``index`` (0-based)."""
        assert index.native < self.file_count, "NotFound: index out of range"
        return self.digests[index.native]

    @abimethod(readonly=True)
    def get_file_count(self) -> arc4.UInt64:
        return arc4.UInt64(self.file_count)
