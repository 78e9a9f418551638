from __future__ import annotations

import json
import logging
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import requests
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import is_address, to_checksum_address
from web3 import Web3
from web3.exceptions import TimeExhausted
from web3.middleware import ExtraDataToPOAMiddleware

from filestamp.core.config import Settings, settings
from filestamp.core.errors import GatewayMisconfigured, TransportTimeout

logger = logging.getLogger(__name__)

ABI_DIR = (Path(__file__).parent / "abi").resolve()
DEFAULT_ABI_PATH = ABI_DIR / "FileStamp.json"

# JSON-RPC codes public nodes use for "query took too long / too many results"
TRANSPORT_RPC_CODES = {-32002, -32005}


@dataclass(frozen=True)
class ChainConfig:
    rpc_url: str
    contract_address: str
    abi_path: Path
    chain_id: int | None = None
    private_key: str | None = None
    request_timeout: float = 60.0


def load_chain_config(cfg: Settings | None = None) -> ChainConfig:
    cfg = cfg or settings
    if not cfg.web3_rpc_url:
        raise GatewayMisconfigured("Backend configuration incomplete. RPC URL not configured (WEB3_RPC_URL).")
    if not cfg.contract_address:
        raise GatewayMisconfigured(
            "Backend configuration incomplete. Contract address not configured (CONTRACT_ADDRESS)."
        )
    if not is_address(cfg.contract_address.lower()):
        raise GatewayMisconfigured(f"CONTRACT_ADDRESS is not a valid address: {cfg.contract_address!r}")

    abi_path = Path(cfg.resolve_path(cfg.contract_abi_path) or DEFAULT_ABI_PATH)
    if (not abi_path.exists()) or (abi_path.stat().st_size == 0):
        raise GatewayMisconfigured(f"ABI not found or empty at {abi_path}")

    return ChainConfig(
        rpc_url=cfg.web3_rpc_url,
        contract_address=to_checksum_address(cfg.contract_address.lower()),
        abi_path=abi_path,
        chain_id=cfg.web3_chain_id,
        private_key=cfg.web3_private_key or None,  # optional for read; required for server-side stamping
        request_timeout=cfg.rpc_timeout_seconds,
    )


def load_abi(path: Path) -> list[dict[str, Any]]:
    # accept pure abi or hardhat artifact with 'abi'
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    abi = data["abi"] if isinstance(data, dict) and "abi" in data else data
    if not isinstance(abi, list):
        raise GatewayMisconfigured(f"ABI at {path} is not a list")
    return abi


def is_transport_error(exc: BaseException) -> bool:
    """
    True when ``exc`` is a network/timeout failure worth retrying,
    as opposed to a semantic rejection from the node or contract.
    """
    if isinstance(exc, (TransportTimeout, FuturesTimeout, TimeoutError, TimeExhausted)):
        return True
    if isinstance(exc, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        return True
    if isinstance(exc, ConnectionError):
        return True

    code = None
    rpc_response = getattr(exc, "rpc_response", None)
    if isinstance(rpc_response, dict):
        code = (rpc_response.get("error") or {}).get("code")
    elif exc.args and isinstance(exc.args[0], dict):
        code = exc.args[0].get("code")
    if code in TRANSPORT_RPC_CODES:
        return True

    msg = str(exc).lower()
    return "timeout" in msg or "timed out" in msg


class Web3Client:
    def __init__(self, cfg: ChainConfig | None = None) -> None:
        self.cfg = cfg or load_chain_config()
        self.w3 = Web3(Web3.HTTPProvider(self.cfg.rpc_url, request_kwargs={"timeout": self.cfg.request_timeout}))
        # Polygon Amoy is PoA-style; add middleware to handle extraData
        self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self.contract = self.w3.eth.contract(address=self.cfg.contract_address, abi=load_abi(self.cfg.abi_path))

    def get_chain_id(self) -> int | None:
        try:
            return self.w3.eth.chain_id
        except Exception as e:
            logger.warning("chain_id lookup failed, using configured value: %s", e)
            return self.cfg.chain_id

    def is_connected(self) -> bool:
        try:
            return bool(self.w3.is_connected())
        except Exception:
            return False


class SignerSession:
    """
    An authenticated signing capability, passed explicitly to each write.

    Wraps an eth-account ``LocalAccount`` plus the chain id it signs for.
    """

    def __init__(self, account: LocalAccount, chain_id: int | None = None) -> None:
        self.account = account
        self.chain_id = chain_id

    @property
    def address(self) -> str:
        return self.account.address

    @classmethod
    def from_private_key(cls, private_key: str | None, chain_id: int | None = None) -> "SignerSession":
        if not private_key:
            raise GatewayMisconfigured(
                "WEB3_PRIVATE_KEY is not set; cannot send transactions. "
                "Set it in apps/api/.env to enable server-side stamping."
            )
        try:
            account = Account.from_key(private_key)
        except Exception as e:  # eth-keys raises its own ValidationError for bad lengths
            raise GatewayMisconfigured(f"WEB3_PRIVATE_KEY is not a valid key: {type(e).__name__}") from e
        return cls(account, chain_id)

    def sign(self, tx: dict[str, Any]) -> tuple[bytes, bytes]:
        """Sign ``tx`` and return (raw_transaction, tx_hash)."""
        signed = self.account.sign_transaction(tx)
        # robust to attribute name across eth-account releases
        raw_tx = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
        if raw_tx is None:
            raise RuntimeError("SignedTransaction has no raw_transaction attribute")
        return bytes(raw_tx), bytes(signed.hash)
