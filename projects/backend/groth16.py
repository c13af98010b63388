"""
ProofMark — Off-chain Groth16 Preflight
========================================

The verifier application on-chain has the final word on every proof. The
backend runs the same check before preparing a registration so a caller
whose proof cannot verify gets a typed InvalidProof instead of a rejected
transaction. Configure it with VERIFICATION_KEY_PATH; without a key the
preflight is skipped and the on-chain verifier alone decides.

The verifier contract has one operation:

    verify(pA, pB, pC, publicSignals) -> bool

It must have no side effects and must not call back into the registry.

Groth16 check (product form, all in GT):

    e(A, B) * e(-alpha1, beta2) * e(-vk_x, gamma2) * e(-C, delta2) == 1
    vk_x = IC[0] + sum_i publicSignals[i] * IC[i + 1]

G2 inputs must lie in the order-r subgroup, as the EIP-197 pairing
precompile requires. The BN254 twist has a large cofactor, so being on the
curve is not enough.

snarkjs encodes G2 coordinates as [c0, c1] for c0 + c1*i. The Solidity
verifier that snarkjs exports takes pB with each pair swapped ([c1, c0]);
pass ``g2_order="solidity"`` when proofs come formatted for that contract.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from py_ecc.optimized_bn128 import (
    FQ,
    FQ2,
    FQ12,
    add,
    b,
    b2,
    curve_order,
    field_modulus,
    final_exponentiate,
    is_inf,
    is_on_curve,
    multiply,
    neg,
    pairing,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class ProofVerifier(Protocol):
    def verify(self, p_a, p_b, p_c, public_signals) -> bool:
        ...


def safe_verify(verifier: ProofVerifier, p_a, p_b, p_c, public_signals) -> bool:
    """
    Call the verifier and reduce every outcome to a bool.

    A verifier that raises on malformed-but-well-typed input is treated as
    having rejected the proof. Only a literal ``True`` counts as acceptance.
    """
    try:
        return verifier.verify(p_a, p_b, p_c, public_signals) is True
    except Exception as e:
        logger.debug(f"Verifier raised, treating proof as invalid: {e!r}")
        return False


# ─────────────────────────────────────────────────────────────────────────────
# Point parsing
# ─────────────────────────────────────────────────────────────────────────────


class _Malformed(Exception):
    pass


def _to_int(value) -> int:
    if isinstance(value, bool):
        raise _Malformed("boolean is not a field element")
    if isinstance(value, int):
        return value
    text = str(value).strip().lower()
    try:
        return int(text, 16) if text.startswith("0x") else int(text)
    except ValueError as e:
        raise _Malformed(f"not an integer: {value!r}") from e


def _fq(value) -> int:
    n = _to_int(value)
    if not 0 <= n < field_modulus:
        raise _Malformed("coordinate outside the base field")
    return n


def _g1(pair):
    x, y = _fq(pair[0]), _fq(pair[1])
    if x == 0 and y == 0:
        return (FQ(1), FQ(1), FQ(0))
    point = (FQ(x), FQ(y), FQ(1))
    if not is_on_curve(point, b):
        raise _Malformed("G1 point not on curve")
    return point


def _g2(pair_x, pair_y, swapped: bool):
    x0, x1 = _fq(pair_x[0]), _fq(pair_x[1])
    y0, y1 = _fq(pair_y[0]), _fq(pair_y[1])
    if swapped:
        x0, x1, y0, y1 = x1, x0, y1, y0
    if x0 == x1 == y0 == y1 == 0:
        return (FQ2([1, 0]), FQ2([1, 0]), FQ2([0, 0]))
    point = (FQ2([x0, x1]), FQ2([y0, y1]), FQ2([1, 0]))
    if not is_on_curve(point, b2):
        raise _Malformed("G2 point not on curve")
    if not is_inf(multiply(point, curve_order)):
        raise _Malformed("G2 point not in the prime-order subgroup")
    return point


# ─────────────────────────────────────────────────────────────────────────────
# Groth16 / BN254
# ─────────────────────────────────────────────────────────────────────────────


class Groth16Verifier:
    """
    Groth16 verifier for one circuit, fixed by its verification key.

    Args:
        verification_key: snarkjs ``verification_key.json`` contents
                          (vk_alpha_1, vk_beta_2, vk_gamma_2, vk_delta_2, IC).
        g2_order        : "snarkjs" (default) or "solidity" coordinate order
                          for pB.

    Raises:
        ValueError: the key is incomplete, or its points are off the curve or
                    outside the subgroup.
    """

    def __init__(self, verification_key: dict, g2_order: str = "snarkjs") -> None:
        if g2_order not in ("snarkjs", "solidity"):
            raise ValueError(f"Unknown G2 coordinate order: {g2_order!r}")
        self.g2_order = g2_order
        try:
            self._alpha1 = _g1(verification_key["vk_alpha_1"])
            self._beta2 = _g2(*verification_key["vk_beta_2"][:2], swapped=False)
            self._gamma2 = _g2(*verification_key["vk_gamma_2"][:2], swapped=False)
            self._delta2 = _g2(*verification_key["vk_delta_2"][:2], swapped=False)
            self._ic = [_g1(p) for p in verification_key["IC"]]
        except (KeyError, IndexError, TypeError, _Malformed) as e:
            raise ValueError(f"Invalid Groth16 verification key: {e}") from e
        if len(self._ic) < 1:
            raise ValueError("Invalid Groth16 verification key: IC is empty")
        self._neg_alpha1 = neg(self._alpha1)

    @classmethod
    def from_file(cls, path, g2_order: str = "snarkjs") -> "Groth16Verifier":
        with open(Path(path), "r", encoding="utf-8") as f:
            return cls(json.load(f), g2_order=g2_order)

    @property
    def n_public(self) -> int:
        return len(self._ic) - 1

    def verify(self, p_a, p_b, p_c, public_signals) -> bool:
        try:
            return self._verify(p_a, p_b, p_c, public_signals)
        except (_Malformed, IndexError, TypeError, ValueError, AssertionError) as e:
            logger.debug(f"Groth16 proof rejected as malformed: {e}")
            return False

    def _verify(self, p_a, p_b, p_c, public_signals) -> bool:
        if len(public_signals) != self.n_public:
            return False

        a = _g1(p_a)
        b_pt = _g2(p_b[0], p_b[1], swapped=self.g2_order == "solidity")
        c = _g1(p_c)

        vk_x = self._ic[0]
        for i, signal in enumerate(public_signals):
            s = _to_int(signal)
            if not 0 <= s < curve_order:
                return False
            if s:
                vk_x = add(vk_x, multiply(self._ic[i + 1], s))

        pairs = (
            (a, b_pt),
            (self._neg_alpha1, self._beta2),
            (neg(vk_x), self._gamma2),
            (neg(c), self._delta2),
        )
        acc = FQ12.one()
        for p, q in pairs:
            acc = acc * pairing(q, p, final_exponentiate=False)
        return final_exponentiate(acc) == FQ12.one()


def load_verifier() -> Optional[Groth16Verifier]:
    """
    Load the preflight verifier from VERIFICATION_KEY_PATH, or None if unset.

    VERIFIER_G2_ORDER selects the pB coordinate order ("snarkjs" or "solidity").
    """
    path = os.getenv("VERIFICATION_KEY_PATH", "")
    if not path:
        logger.info("VERIFICATION_KEY_PATH not set, proof preflight disabled")
        return None
    verifier = Groth16Verifier.from_file(path, g2_order=os.getenv("VERIFIER_G2_ORDER", "snarkjs"))
    logger.info(f"Loaded Groth16 verification key from {path} ({verifier.n_public} public signal(s))")
    return verifier
