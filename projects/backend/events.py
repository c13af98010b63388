"""
ProofMark — ARC-28 Event Decoding
==================================

The registry logs one ARC-28 event per state change. A log entry is the
4-byte selector sha512_256("Name(types)")[:4] followed by the ABI-encoded
struct:

  FileRegistered(uint256,address,string,uint64)   digest, uploader, file_name, timestamp
  UploaderAdded(address)                          account
  UploaderRemoved(address)                        account
  OwnershipTransferred(address,address)           previous, new (zero address = none)

Decoded events are plain dicts, safe to hand to MongoDB or json.dumps. Other
log lines (the ABI return value, foreign events) are skipped.
"""

import base64
from typing import Optional

from algosdk import abi, encoding

from backend.proofs import DIGEST_SIZE, digest_to_hex

EVENT_SIGNATURES = {
    "FileRegistered": "(uint256,address,string,uint64)",
    "UploaderAdded": "(address)",
    "UploaderRemoved": "(address)",
    "OwnershipTransferred": "(address,address)",
}

ZERO_ADDRESS = encoding.encode_address(bytes(32))


def event_selector(name: str) -> bytes:
    return encoding.checksum(f"{name}{EVENT_SIGNATURES[name]}".encode("utf-8"))[:4]


_BY_SELECTOR = {
    event_selector(name): (name, abi.ABIType.from_string(types))
    for name, types in EVENT_SIGNATURES.items()
}


def _account(address: str) -> Optional[str]:
    return None if address == ZERO_ADDRESS else address


def encode_event(name: str, *values) -> bytes:
    """Encode one event log line the way the contract's arc4.emit does."""
    abi_type = abi.ABIType.from_string(EVENT_SIGNATURES[name])
    return event_selector(name) + abi_type.encode(list(values))


def decode_event(log: bytes) -> Optional[dict]:
    """Decode one raw log line; None if it is not a registry event."""
    entry = _BY_SELECTOR.get(bytes(log[:4]))
    if entry is None:
        return None
    name, abi_type = entry
    values = abi_type.decode(bytes(log[4:]))

    if name == "FileRegistered":
        digest, uploader, file_name, timestamp = values
        return {
            "event": name,
            "digest": digest_to_hex(digest.to_bytes(DIGEST_SIZE, "big")),
            "uploader": uploader,
            "file_name": file_name,
            "timestamp": timestamp,
        }
    if name == "OwnershipTransferred":
        previous, new = values
        return {"event": name, "previous": _account(previous), "new": _account(new)}
    return {"event": name, "account": values[0]}


def decode_logs(logs: list) -> list[dict]:
    """
    Decode the base64 ``logs`` of a confirmed application call.

    Each event carries ``log_index``, its position in the call's logs, so
    (transaction ID, log_index) identifies it uniquely.
    """
    events = []
    for i, line in enumerate(logs):
        event = decode_event(base64.b64decode(line))
        if event is not None:
            events.append({**event, "log_index": i})
    return events
