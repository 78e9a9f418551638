# apps/api/src/filestamp/core/config.py
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# walk up until we find .env so the API can be started from any directory
def _load_dotenv_once() -> None:
    here = Path(__file__).resolve()
    for p in [here.parent, *here.parents]:
        env = p / ".env"
        if env.exists():
            load_dotenv(env)  # never overrides variables already set
            break
_load_dotenv_once()


class Settings(BaseSettings):
    # Load .env, accept extra keys without failing
    api_prefix: str = "/api"
    environment: str = "dev"
    log_level: str = "INFO"
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",          # don't crash on unknown env vars
    )

    # --- Side-store (optional; unset disables metadata persistence) ---
    database_url: str | None = Field(
        default="sqlite:///./filestamp_dev.db",
        description="SQLAlchemy URL for the stamp metadata table",
    )

    # --- Web3 / Chain ---
    # No fallback endpoint or contract: a missing value surfaces as GatewayMisconfigured.
    web3_rpc_url: str | None = Field(default=None, description="RPC URL, e.g. https://rpc-amoy.polygon.technology")
    web3_chain_id: int | None = Field(default=None, description="EVM chain id, e.g. 80002 for Polygon Amoy")
    web3_private_key: str | None = Field(default=None, description="Server signer private key (0x...)")
    contract_address: str | None = Field(default=None, description="Address of the FileStamp contract")
    contract_abi_path: str | None = Field(
        default=None,
        description="Path to FileStamp.json (plain ABI or Hardhat artifact); bundled ABI when unset",
    )

    # --- Timeouts / ranges ---
    rpc_timeout_seconds: float = 60.0
    history_timeout_seconds: float = 30.0
    history_default_window: int = 3_000_000   # ~35 days on Polygon Amoy
    history_fallback_window: int = 100_000    # ~1 day
    write_max_retries: int = 2
    write_retry_backoff_seconds: float = 0.5
    tx_receipt_timeout_seconds: float = 180.0

    # --- HTTP ---
    max_upload_bytes: int = 100 * 1024 * 1024
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    def resolve_path(self, p: str | None) -> str | None:
        if not p:
            return None
        pp = Path(p)
        if pp.is_absolute():
            return str(pp)
        # relative to apps/api
        root = Path(__file__).resolve().parents[3]
        return str((root / pp).resolve())


settings = Settings()
