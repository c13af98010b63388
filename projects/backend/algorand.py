"""
ProofMark — Algorand Blockchain Interaction Module
===================================================
Reads ProofMark state straight from algod and builds the unsigned
transactions a wallet signs to change it.

Design: the registry lives on-chain. This module keeps no registry state of
its own, so a restarted backend sees exactly what the ledger holds. Writes
are never signed here: the backend prepares an unsigned group for the
caller's account, the caller's wallet signs it, and relay() forwards the
signed group to algod after checking that it calls this app and comes from
the authenticated caller. Preflight checks mirror the contract's asserts so
callers get typed errors instead of a rejected transaction; the AVM still
enforces every rule.

State layout (see smart_contracts/proofmark/contract.py):
  Global "owner"            bytes  32-byte public key, all zero once renounced
  Global "verifier_app_id"  uint
  Global "file_count"       uint
  Box "rec_" + digest       FileRecord (address,uint64,string)
  Box "idx_" + itob(i)      digest registered at insertion position i
  Box "upl_" + public key   present while the account holds the uploader role

ABI method signatures:
  register_file(uint256[2],uint256[2][2],uint256[2],uint256[1],string)uint256
  add_uploader(address)void
  remove_uploader(address)void
  transfer_ownership(address)void
  renounce_ownership()void
"""

import base64
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from algosdk import abi, encoding, transaction
from algosdk.atomic_transaction_composer import AtomicTransactionComposer, EmptySigner
from algosdk.error import AlgodHTTPError
from algosdk.v2client import algod, indexer

from backend.errors import (
    AlreadyRegistered,
    InvalidArgument,
    InvalidProof,
    NotFound,
    TransactionRejected,
    Unauthorized,
)
from backend.events import decode_logs
from backend.groth16 import ProofVerifier, load_verifier, safe_verify
from backend.proofs import (
    DIGEST_SIZE,
    check_proof_shape,
    derive_content_digest,
    digest_to_hex,
    to_field_elements,
)

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────────────────────────────────────
# ABI Method Definitions
# Defined once at module load; they mirror the ProofMark contract ABI
# ─────────────────────────────────────────────────────────────────────────────

# FileRecord tuple type for decoding record boxes
FILE_RECORD_TYPE = abi.ABIType.from_string("(address,uint64,string)")

REGISTER_METHOD = abi.Method.from_signature(
    "register_file(uint256[2],uint256[2][2],uint256[2],uint256[1],string)uint256"
)

ADMIN_METHODS = {
    "add_uploader": abi.Method.from_signature("add_uploader(address)void"),
    "remove_uploader": abi.Method.from_signature("remove_uploader(address)void"),
    "transfer_ownership": abi.Method.from_signature("transfer_ownership(address)void"),
    "renounce_ownership": abi.Method.from_signature("renounce_ownership()void"),
}

RECORD_PREFIX = b"rec_"
INDEX_PREFIX = b"idx_"
UPLOADER_PREFIX = b"upl_"

ZERO_ADDRESS = encoding.encode_address(bytes(32))

# Application args are capped at 2KB per call; the proof takes 292 bytes of it.
MAX_FILE_NAME_BYTES = 1024


# ─────────────────────────────────────────────────────────────────────────────
# Client Initialization
# ─────────────────────────────────────────────────────────────────────────────


def get_algod_client() -> algod.AlgodClient:
    """Create and return an AlgodClient connected to the configured network."""
    server = os.getenv("ALGORAND_ALGOD_SERVER", "https://testnet-api.algonode.cloud")
    port = os.getenv("ALGORAND_ALGOD_PORT", "")
    token = os.getenv(
        "ALGORAND_ALGOD_TOKEN",
        "a" * 64,  # AlgoNode public endpoint uses empty or any token
    )
    url = f"{server}:{port}" if port else server
    return algod.AlgodClient(token, url)


def get_indexer_client() -> indexer.IndexerClient:
    """Create and return an IndexerClient for the audit follower."""
    server = os.getenv("ALGORAND_INDEXER_SERVER", "https://testnet-idx.algonode.cloud")
    port = os.getenv("ALGORAND_INDEXER_PORT", "")
    token = os.getenv("ALGORAND_INDEXER_TOKEN", "a" * 64)
    url = f"{server}:{port}" if port else server
    return indexer.IndexerClient(token, url)


def get_app_id() -> int:
    """Load the deployed ProofMark App ID from environment."""
    app_id_str = os.getenv("ALGORAND_APP_ID", "0").strip() or "0"
    try:
        app_id = int(app_id_str)
    except ValueError as e:
        raise ValueError(f"ALGORAND_APP_ID must be an integer, got {app_id_str!r}") from e
    if app_id <= 0:
        raise ValueError(
            "ALGORAND_APP_ID is not set. Deploy the contract first with: "
            "algokit project deploy testnet"
        )
    return app_id


def require_address(value) -> str:
    """
    Return ``value`` if it is a well-formed Algorand address.

    Raises:
        InvalidArgument: not a string, or not a valid checksummed address.
    """
    if not isinstance(value, str) or not encoding.is_valid_address(value):
        raise InvalidArgument(f"Not a valid Algorand address: {value!r}")
    return value


# ─────────────────────────────────────────────────────────────────────────────
# Records
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FileRecord:
    uploader: str
    timestamp: int
    file_name: str

    @classmethod
    def decode(cls, value: bytes) -> "FileRecord":
        uploader, timestamp, file_name = FILE_RECORD_TYPE.decode(value)
        return cls(uploader=uploader, timestamp=int(timestamp), file_name=file_name)


def record_to_dict(digest: bytes, record: FileRecord) -> dict:
    return {
        "digest": digest_to_hex(digest),
        "uploader": record.uploader,
        "file_name": record.file_name,
        "timestamp": record.timestamp,
        "registered_at": datetime.fromtimestamp(record.timestamp, tz=timezone.utc).strftime(
            "%Y-%m-%d %H:%M:%S UTC"
        ),
    }


# ─────────────────────────────────────────────────────────────────────────────
# Registry gateway
# ─────────────────────────────────────────────────────────────────────────────


class RegistryClient:
    """
    Gateway to one deployed ProofMark application.

    Args:
        algod_client: algod connection used for reads and relaying.
        app_id      : ProofMark application ID.
        verifier    : optional off-chain Groth16 preflight. When set, a
                      registration whose proof fails it is refused with
                      InvalidProof before a transaction is built.
    """

    def __init__(self, algod_client, app_id: int, verifier: Optional[ProofVerifier] = None) -> None:
        self.algod = algod_client
        self.app_id = app_id
        self.verifier = verifier

    # ── Reads ────────────────────────────────────────────────────────────────

    def _global_state(self) -> dict:
        info = self.algod.application_info(self.app_id)
        state = {}
        for entry in info.get("params", {}).get("global-state", []):
            key = base64.b64decode(entry["key"]).decode("utf-8")
            value = entry["value"]
            # type 1 = bytes, type 2 = uint; algod omits zero values
            if value["type"] == 1:
                state[key] = base64.b64decode(value.get("bytes", ""))
            else:
                state[key] = value.get("uint", 0)
        return state

    def _box(self, name: bytes) -> Optional[bytes]:
        try:
            response = self.algod.application_box_by_name(self.app_id, name)
        except AlgodHTTPError as e:
            if e.code == 404:
                return None
            raise
        return base64.b64decode(response["value"])

    def owner(self) -> Optional[str]:
        """Current owner address, or None once ownership is renounced."""
        raw = self._global_state().get("owner", bytes(32))
        if raw == bytes(32):
            return None
        return encoding.encode_address(raw)

    def verifier_app_id(self) -> int:
        return self._global_state().get("verifier_app_id", 0)

    def get_file_count(self) -> int:
        return self._global_state().get("file_count", 0)

    def is_uploader(self, address) -> bool:
        address = require_address(address)
        return self._box(UPLOADER_PREFIX + encoding.decode_address(address)) is not None

    def uploaders(self) -> list[str]:
        response = self.algod.application_boxes(self.app_id)
        names = (base64.b64decode(box["name"]) for box in response.get("boxes", []))
        return sorted(
            encoding.encode_address(name[len(UPLOADER_PREFIX):])
            for name in names
            if name.startswith(UPLOADER_PREFIX)
        )

    def record_exists(self, digest: bytes) -> bool:
        return self._box(RECORD_PREFIX + digest) is not None

    def get_file_record(self, digest: bytes) -> FileRecord:
        """
        Raises:
            NotFound: no record for ``digest``.
        """
        value = self._box(RECORD_PREFIX + digest)
        if value is None:
            raise NotFound(f"No record for digest {digest_to_hex(digest)}")
        return FileRecord.decode(value)

    def get_all_file_records(self) -> tuple[list[bytes], list[FileRecord]]:
        """All (digest, record) pairs in insertion order."""
        digests: list[bytes] = []
        records: list[FileRecord] = []
        for i in range(self.get_file_count()):
            digest = self._box(INDEX_PREFIX + i.to_bytes(8, "big"))
            if digest is None:
                raise RuntimeError(f"Index box {i} missing below file_count")
            digests.append(digest[:DIGEST_SIZE])
            records.append(self.get_file_record(digest[:DIGEST_SIZE]))
        return digests, records

    # ── Transaction building ─────────────────────────────────────────────────

    def _compose(
        self,
        sender: str,
        method: abi.Method,
        method_args: list,
        boxes: list[bytes],
        foreign_apps: Optional[list[int]] = None,
        inner_calls: int = 0,
    ) -> list[str]:
        sp = self.algod.suggested_params()
        # The outer call pays for its inner calls (fee pooling).
        sp.flat_fee = True
        sp.fee = (1 + inner_calls) * (sp.min_fee or 1000)

        atc = AtomicTransactionComposer()
        atc.add_method_call(
            app_id=self.app_id,
            method=method,
            sender=sender,
            sp=sp,
            signer=EmptySigner(),
            method_args=method_args,
            foreign_apps=foreign_apps,
            boxes=[(self.app_id, name) for name in boxes],
        )
        return [encoding.msgpack_encode(tws.txn) for tws in atc.build_group()]

    def prepare_register(self, sender: str, p_a, p_b, p_c, public_signals, file_name: str) -> dict:
        """
        Check a registration the way the contract will, then build it unsigned.

        Check order: role, shape, duplicate, proof. A known duplicate never
        costs a pairing check.

        Returns:
            dict with keys: digest, txns (base64 msgpack, unsigned)

        Raises:
            Unauthorized / InvalidArgument / AlreadyRegistered / InvalidProof
        """
        sender = require_address(sender)
        if not self.is_uploader(sender):
            raise Unauthorized("Caller is not an uploader")

        # snarkjs hands out decimal strings; the ABI wants integers.
        p_a, p_b, p_c, public_signals = (
            to_field_elements(v) if isinstance(v, list) else v for v in (p_a, p_b, p_c, public_signals)
        )
        check_proof_shape(p_a, p_b, p_c, public_signals)
        if not isinstance(file_name, str) or len(file_name.encode("utf-8")) > MAX_FILE_NAME_BYTES:
            raise InvalidArgument(f"fileName must be a string of at most {MAX_FILE_NAME_BYTES} bytes")
        digest = derive_content_digest(public_signals)

        if self.record_exists(digest):
            raise AlreadyRegistered(f"Digest {digest_to_hex(digest)} is already registered")

        if self.verifier is not None and not safe_verify(self.verifier, p_a, p_b, p_c, public_signals):
            raise InvalidProof("Proof did not verify")

        state = self._global_state()
        # The index box for this registration is the one at the current count.
        # If another registration lands first the call fails its box reference
        # check and the caller prepares again.
        index = state.get("file_count", 0)
        txns = self._compose(
            sender,
            REGISTER_METHOD,
            [p_a, p_b, p_c, public_signals, file_name],
            boxes=[
                UPLOADER_PREFIX + encoding.decode_address(sender),
                RECORD_PREFIX + digest,
                INDEX_PREFIX + index.to_bytes(8, "big"),
            ],
            foreign_apps=[state.get("verifier_app_id", 0)],
            inner_calls=1,
        )
        logger.info(f"Prepared registration: digest={digest_to_hex(digest)} uploader={sender}")
        return {"digest": digest_to_hex(digest), "txns": txns}

    def prepare_admin(self, sender: str, action: str, address=None) -> dict:
        """
        Check an owner operation, then build it unsigned.

        Args:
            action : add_uploader | remove_uploader | transfer_ownership | renounce_ownership
            address: target account (not used by renounce_ownership)

        Raises:
            InvalidArgument: unknown action, malformed or zero address
            Unauthorized   : sender is not the owner (or there is none)
        """
        method = ADMIN_METHODS.get(action)
        if method is None:
            raise InvalidArgument(f"Unknown action: {action!r}")
        sender = require_address(sender)
        if sender != self.owner():
            raise Unauthorized("Caller is not the owner")

        if action == "renounce_ownership":
            txns = self._compose(sender, method, [], boxes=[])
        else:
            address = require_address(address)
            if address == ZERO_ADDRESS and action != "remove_uploader":
                raise InvalidArgument("The zero address cannot hold a role")
            boxes = [] if action == "transfer_ownership" else [UPLOADER_PREFIX + encoding.decode_address(address)]
            txns = self._compose(sender, method, [address], boxes=boxes)

        logger.info(f"Prepared {action}: target={address} owner={sender}")
        return {"action": action, "txns": txns}

    # ── Relay ────────────────────────────────────────────────────────────────

    def relay(self, caller: str, signed_txns: list) -> dict:
        """
        Submit a wallet-signed group and wait for confirmation.

        Every transaction must be a signed call to this app sent by ``caller``.

        Returns:
            dict with keys: tx_id, confirmed_round, events (decoded ARC-28 logs)

        Raises:
            InvalidArgument     : not a signed call to this app
            Unauthorized        : sender is not the authenticated caller
            TransactionRejected : algod refused the group
        """
        if not signed_txns:
            raise InvalidArgument("No transactions to submit")

        stxns = []
        for blob in signed_txns:
            try:
                stxn = encoding.msgpack_decode(blob)
            except Exception as e:
                raise InvalidArgument("Not a base64 msgpack transaction") from e
            if not isinstance(stxn, transaction.SignedTransaction):
                raise InvalidArgument("Transaction is not signed")
            txn = stxn.transaction
            if not isinstance(txn, transaction.ApplicationCallTxn) or txn.index != self.app_id:
                raise InvalidArgument(f"Transaction does not call app {self.app_id}")
            if txn.sender != caller:
                raise Unauthorized("Transaction sender is not the authenticated account")
            stxns.append(stxn)

        try:
            tx_id = self.algod.send_transactions(stxns)
        except AlgodHTTPError as e:
            logger.info(f"algod rejected group from {caller}: {e}")
            raise TransactionRejected(str(e)) from e

        result = transaction.wait_for_confirmation(self.algod, tx_id, 4)
        events = decode_logs(result.get("logs", []))
        logger.info(f"Confirmed tx={tx_id} round={result.get('confirmed-round')} events={len(events)}")
        return {
            "tx_id": tx_id,
            "confirmed_round": result.get("confirmed-round"),
            "events": events,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Process-wide gateway
# ─────────────────────────────────────────────────────────────────────────────

_registry: Optional[RegistryClient] = None
_registry_lock = threading.Lock()


def get_registry() -> RegistryClient:
    """
    Return the process-wide gateway, building it from the environment on first call.

    Raises:
        ValueError: ALGORAND_APP_ID is not set, or the verification key is invalid.
    """
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = RegistryClient(get_algod_client(), get_app_id(), verifier=load_verifier())
            logger.info(f"Registry gateway ready: app_id={_registry.app_id}")
        return _registry


def use_registry(client: RegistryClient) -> RegistryClient:
    """Install an already-built gateway (embedding, tests)."""
    global _registry
    with _registry_lock:
        _registry = client
    return client


def reset_registry() -> None:
    global _registry
    with _registry_lock:
        _registry = None
