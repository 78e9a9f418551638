from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Optional

from filestamp.services.blockchain.gateway import ChainGateway
from filestamp.services.blockchain.schemas import ms_to_iso
from filestamp.services.hashing import BytesLike, resolve_fingerprint
from filestamp.services.reconcile import MetadataReconciler

logger = logging.getLogger(__name__)


class VerifyState(str, enum.Enum):
    START = "START"
    HASHED = "HASHED"
    CHECKED = "CHECKED"
    FOUND = "FOUND"
    NOT_FOUND = "NOT_FOUND"
    ENRICHED = "ENRICHED"
    DONE = "DONE"


@dataclass
class VerificationResult:
    exists: bool
    fingerprint: str
    owner: Optional[str] = None
    timestamp_ms: Optional[int] = None
    is_public: Optional[bool] = None
    file_name: Optional[str] = None
    tx_id: Optional[str] = None
    states: list[VerifyState] = field(default_factory=list)

    @property
    def timestamp_iso(self) -> Optional[str]:
        return ms_to_iso(self.timestamp_ms) if self.timestamp_ms is not None else None


class VerificationFlow:
    """
    START -> HASHED -> CHECKED -> (FOUND -> ENRICHED | NOT_FOUND) -> DONE

    Nothing is retried; a gateway error at CHECKED propagates unchanged.
    """

    def __init__(self, gateway: ChainGateway, reconciler: MetadataReconciler) -> None:
        self.gateway = gateway
        self.reconciler = reconciler

    def verify(
        self,
        data: BytesLike,
        *,
        pin: Optional[str] = None,
        precomputed: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> VerificationResult:
        trail = [VerifyState.START]

        fp = resolve_fingerprint(data, pin, precomputed)
        self._step(trail, VerifyState.HASHED, fp)

        status = self.gateway.exists(fp)
        self._step(trail, VerifyState.CHECKED, fp)

        if not status.exists:
            self._step(trail, VerifyState.NOT_FOUND, fp)
            self._step(trail, VerifyState.DONE, fp)
            return VerificationResult(exists=False, fingerprint=fp, states=trail)

        self._step(trail, VerifyState.FOUND, fp)
        merged = self.reconciler.merge(status, self.reconciler.lookup_metadata(fp))
        self._step(trail, VerifyState.ENRICHED, fp)

        self._step(trail, VerifyState.DONE, fp)
        return VerificationResult(
            exists=True,
            fingerprint=fp,
            owner=merged.owner,
            timestamp_ms=merged.timestamp_ms,
            is_public=merged.is_public,
            file_name=merged.file_name or file_name,
            tx_id=merged.tx_id,
            states=trail,
        )

    @staticmethod
    def _step(trail: list[VerifyState], state: VerifyState, fp: str) -> None:
        trail.append(state)
        logger.debug("verify %s -> %s", fp[:12], state.value)
