"""
ProofMark — Registry Errors
============================

Every request the gateway refuses raises exactly one of these before anything
is sent to the ledger. The HTTP layer maps them to status codes by ``kind``.
"""


class RegistryError(Exception):
    """Base class for all caller-visible registry failures."""

    kind = "registry_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class Unauthorized(RegistryError):
    """Caller lacks the required role or ownership."""

    kind = "unauthorized"


class InvalidArgument(RegistryError):
    """Null identity, malformed address, or structurally invalid input."""

    kind = "invalid_argument"


class AlreadyRegistered(RegistryError):
    """A record already exists for the derived content digest."""

    kind = "already_registered"


class InvalidProof(RegistryError):
    """The proof verifier rejected the supplied proof."""

    kind = "invalid_proof"


class NotFound(RegistryError):
    """No record exists for the requested content digest."""

    kind = "not_found"


class TransactionRejected(RegistryError):
    """algod refused a relayed transaction group (the AVM rejected it)."""

    kind = "rejected"
