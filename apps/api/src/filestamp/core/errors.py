"""
Exception hierarchy for stamping, verification and history.

Every error carries a ``classification`` that tells a caller which of
these happened: the input was invalid, the proof already exists, the
network is unavailable (retry later), or the operation partially
succeeded. The HTTP layer renders them through a single handler using
``status_code``.
"""

from __future__ import annotations


class StampError(Exception):
    """Base exception for all FileStamp errors."""

    classification = "error"
    status_code = 500
    hint = "unexpected error"

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {
            "error": self.message,
            "classification": self.classification,
            "hint": self.hint,
        }
        if self.details:
            body["details"] = self.details
        return body


class InvalidInput(StampError):
    """Malformed address, file or hash. Caller error, never retried."""

    classification = "invalid_input"
    status_code = 400
    hint = "your input was invalid"


class PayloadTooLarge(InvalidInput):
    status_code = 413


class StampNotFound(StampError):
    """The chain has no stamp for a fingerprint the caller claims was written."""

    classification = "not_found"
    status_code = 404
    hint = "no proof exists on-chain yet; wait for confirmation"


class DuplicateStamp(StampError):
    """Semantic rejection: the fingerprint already has a stamp."""

    classification = "duplicate"
    status_code = 409
    hint = "the proof was already created"


class TransactionRejected(StampError):
    """The contract reverted for a reason other than a duplicate."""

    classification = "rejected"
    status_code = 422
    hint = "the contract rejected the transaction"


class GatewayUnavailable(StampError):
    classification = "unavailable"
    status_code = 503
    hint = "the network/service is unavailable - retry later"


class GatewayMisconfigured(GatewayUnavailable):
    """Missing endpoint, contract address or signer. Needs operator action."""

    classification = "misconfigured"
    hint = "the service is not configured for this operation"


class TransportTimeout(GatewayUnavailable):
    status_code = 504


class HistoryUnavailable(GatewayUnavailable):
    pass


class SideStoreDegraded(StampError):
    """Metadata could not be written; the on-chain proof is unaffected."""

    classification = "degraded"
    status_code = 200
    hint = "partially succeeded - proof exists, metadata may be incomplete"
