"""
ProofMark — Proof and Digest Helpers
=====================================

A ContentDigest is the 32-byte big-endian encoding of the first public signal
of a registration proof. The proof circuit binds that signal to the file
content (e.g. a Poseidon hash); the registry takes the binding as given and
never tries to recompute it. On-chain the digest is the ``uint256`` key of
the record box.

Hex form used on the wire: "0x" + 64 lowercase hex characters.
"""

from collections.abc import Sequence

from backend.errors import InvalidArgument

DIGEST_SIZE = 32
_DIGEST_LIMIT = 1 << (DIGEST_SIZE * 8)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_vector(name: str, value: object, length: int) -> None:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence) or len(value) != length:
        raise InvalidArgument(f"{name} must be a sequence of {length} field elements")
    if not all(_is_int(v) for v in value):
        raise InvalidArgument(f"{name} elements must be integers")
    if not all(0 <= v < _DIGEST_LIMIT for v in value):
        raise InvalidArgument(f"{name} elements must fit in uint256")


def to_field_element(value) -> int:
    """Parse a snarkjs field element: an int, a decimal string or a 0x-hex string."""
    if isinstance(value, bool):
        raise InvalidArgument("field elements must be integers")
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise InvalidArgument(f"not a field element: {value!r}")
    text = value.strip().lower()
    try:
        return int(text, 16) if text.startswith("0x") else int(text)
    except ValueError as e:
        raise InvalidArgument(f"not a field element: {value!r}") from e


def to_field_elements(values: list) -> list:
    """Apply to_field_element through nested lists, keeping their shape."""
    return [to_field_elements(v) if isinstance(v, list) else to_field_element(v) for v in values]


def check_proof_shape(p_a, p_b, p_c, public_signals) -> None:
    """
    Reject proof components that are not shaped like a Groth16 proof.

    Only the structure is checked (pA: 2, pB: 2x2, pC: 2, publicSignals: 1),
    plus that every element fits the ABI's uint256. Values are otherwise
    passed to the verifier untouched.

    Raises:
        InvalidArgument: on any structural mismatch.
    """
    _check_vector("pA", p_a, 2)
    if isinstance(p_b, (str, bytes)) or not isinstance(p_b, Sequence) or len(p_b) != 2:
        raise InvalidArgument("pB must be a 2x2 matrix of field elements")
    for row in p_b:
        _check_vector("pB row", row, 2)
    _check_vector("pC", p_c, 2)
    _check_vector("publicSignals", public_signals, 1)


def derive_content_digest(public_signals: Sequence[int]) -> bytes:
    """
    Extract the content digest from a proof's public signals.

    Args:
        public_signals: One-element sequence; element 0 is the digest as an
                        unsigned integer.

    Returns:
        The 32-byte big-endian digest.

    Raises:
        InvalidArgument: wrong arity, non-integer, negative or >= 2**256.
    """
    _check_vector("publicSignals", public_signals, 1)
    return public_signals[0].to_bytes(DIGEST_SIZE, "big")


def digest_to_hex(digest: bytes) -> str:
    return "0x" + bytes(digest).hex()


def parse_digest(value) -> bytes:
    """Accept a 32-byte value or its hex form (with or without 0x)."""
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        text = value.strip().lower()
        if text.startswith("0x"):
            text = text[2:]
        try:
            raw = bytes.fromhex(text)
        except ValueError as e:
            raise InvalidArgument(f"digest is not valid hex: {value!r}") from e
    else:
        raise InvalidArgument("digest must be bytes or a hex string")

    if len(raw) != DIGEST_SIZE:
        raise InvalidArgument(f"digest must be exactly {DIGEST_SIZE} bytes")
    return raw
