"""Fixtures for the ProofMark HTTP service tests."""

import base64
from collections.abc import Callable, Iterator
from typing import Optional

import pytest
from algosdk import account, encoding, transaction
from algosdk.error import AlgodHTTPError
from fastapi.testclient import TestClient

from backend import algorand
from backend.algorand import (
    FILE_RECORD_TYPE,
    INDEX_PREFIX,
    RECORD_PREFIX,
    UPLOADER_PREFIX,
    RegistryClient,
)
from backend.auth import create_token
from backend.main import app

APP_ID = 1002
VERIFIER_APP_ID = 1001
DIGEST = 0x1F3A7B2C91D4E5F60718293A4B5C6D7E8F90A1B2C3D4E5F60718293A4B5C6D7E
GENESIS_HASH = "SGO1GKSzyE7IEPItTxCByw9x8FmnrCDexi9/cOUJOiI="


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


class FakeAlgod:
    """
    In-memory algod serving one ProofMark app's global state and boxes.

    State is seeded directly, the way confirmed calls would have left it on
    the ledger. Relayed groups are recorded in ``sent`` and confirm with
    ``logs`` as their log output.
    """

    def __init__(self, owner: str) -> None:
        self.global_state: dict = {
            "owner": encoding.decode_address(owner),
            "verifier_app_id": VERIFIER_APP_ID,
            "file_count": 0,
        }
        self.boxes: dict[bytes, bytes] = {}
        self.sent: list = []
        self.logs: list[bytes] = []
        self.reject_with: Optional[str] = None

    # ── Seeding ──────────────────────────────────────────────────────────────

    def enroll(self, address: str) -> None:
        self.boxes[UPLOADER_PREFIX + encoding.decode_address(address)] = b"\x80"

    def put_record(self, digest: int, uploader: str, file_name: str = "a.pdf", timestamp: int = 1_700_000_000) -> bytes:
        key = digest.to_bytes(32, "big")
        index = self.global_state["file_count"]
        self.boxes[RECORD_PREFIX + key] = FILE_RECORD_TYPE.encode([uploader, timestamp, file_name])
        self.boxes[INDEX_PREFIX + index.to_bytes(8, "big")] = key
        self.global_state["file_count"] = index + 1
        return key

    def renounce(self) -> None:
        self.global_state["owner"] = bytes(32)

    # ── algod API ────────────────────────────────────────────────────────────

    def application_info(self, app_id: int) -> dict:
        entries = []
        for key, value in self.global_state.items():
            name = _b64(key.encode("utf-8"))
            if isinstance(value, bytes):
                entries.append({"key": name, "value": {"type": 1, "bytes": _b64(value), "uint": 0}})
            elif value:
                entries.append({"key": name, "value": {"type": 2, "bytes": "", "uint": value}})
            else:
                entries.append({"key": name, "value": {"type": 2, "bytes": ""}})
        return {"id": app_id, "params": {"global-state": entries}}

    def application_box_by_name(self, app_id: int, name: bytes) -> dict:
        if name not in self.boxes:
            raise AlgodHTTPError("box not found", 404)
        return {"name": _b64(name), "value": _b64(self.boxes[name])}

    def application_boxes(self, app_id: int, limit: int = 0) -> dict:
        return {"boxes": [{"name": _b64(name)} for name in self.boxes]}

    def suggested_params(self) -> transaction.SuggestedParams:
        return transaction.SuggestedParams(
            fee=0, first=1, last=1001, gh=GENESIS_HASH, gen="testnet-v1.0", flat_fee=False, min_fee=1000
        )

    def send_transactions(self, stxns: list) -> str:
        if self.reject_with:
            raise AlgodHTTPError(self.reject_with, 400)
        self.sent.append(stxns)
        return stxns[0].get_txid()

    def status(self, **kwargs) -> dict:
        return {"last-round": 10}

    def pending_transaction_info(self, txid: str, **kwargs) -> dict:
        return {"confirmed-round": 11, "logs": [_b64(line) for line in self.logs]}


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch) -> Iterator[None]:
    for name in (
        "ALGORAND_APP_ID",
        "VERIFICATION_KEY_PATH",
        "VERIFIER_G2_ORDER",
        "MONGODB_URI",
        "AUDIT_WEBHOOK_URL",
        "AUDIT_WEBHOOK_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("JWT_SECRET_KEY", "test-secret")
    yield
    algorand.reset_registry()


@pytest.fixture()
def owner_account() -> tuple[str, str]:
    return account.generate_account()


@pytest.fixture()
def uploader_account() -> tuple[str, str]:
    return account.generate_account()


@pytest.fixture()
def owner(owner_account) -> str:
    return owner_account[1]


@pytest.fixture()
def uploader(uploader_account) -> str:
    return uploader_account[1]


@pytest.fixture()
def outsider() -> str:
    return account.generate_account()[1]


@pytest.fixture()
def ledger(owner: str) -> FakeAlgod:
    return FakeAlgod(owner)


@pytest.fixture()
def registry(ledger: FakeAlgod) -> RegistryClient:
    return algorand.use_registry(RegistryClient(ledger, APP_ID))


@pytest.fixture()
def client(registry: RegistryClient) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def enrolled(ledger: FakeAlgod, uploader: str) -> str:
    ledger.enroll(uploader)
    return uploader


@pytest.fixture()
def headers() -> Callable[[str], dict]:
    def _headers(address: str) -> dict:
        return {"Authorization": f"Bearer {create_token(address)}"}

    return _headers


@pytest.fixture()
def sign() -> Callable[[list, str], list]:
    """Wallet side: sign prepared base64 transactions with a private key."""

    def _sign(txns: list, private_key: str) -> list:
        return [encoding.msgpack_encode(encoding.msgpack_decode(t).sign(private_key)) for t in txns]

    return _sign


@pytest.fixture()
def body() -> Callable[..., dict]:
    """snarkjs-shaped registration body."""

    def _body(digest: int = DIGEST, file_name: str = "a.pdf") -> dict:
        return {
            "pA": ["1", "2"],
            "pB": [["3", "4"], ["5", "6"]],
            "pC": ["7", "8"],
            "publicSignals": [str(digest)],
            "fileName": file_name,
        }

    return _body


@pytest.fixture()
def digest_hex() -> str:
    return "0x" + DIGEST.to_bytes(32, "big").hex()
