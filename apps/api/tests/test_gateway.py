import pytest
import requests

from filestamp.core.errors import (
    GatewayMisconfigured,
    GatewayUnavailable,
    HistoryUnavailable,
    InvalidInput,
    StampNotFound,
    TransportTimeout,
)
from filestamp.core.config import Settings
from filestamp.services.blockchain.client import is_transport_error, load_chain_config
from filestamp.services.blockchain.gateway import ChainGateway
from filestamp.services.blockchain.schemas import RangePolicy
from filestamp.services.hashing import fingerprint

from conftest import OTHER_ADDRESS, TEST_ADDRESS, FakeClient


def _fp(n: int) -> str:
    return fingerprint(f"file-{n}".encode())


# ---------- configuration ----------

def test_missing_rpc_url_is_misconfigured():
    cfg = Settings(web3_rpc_url=None, contract_address="0xf8d623dbfa1dd1a3c904a69323df00773827c2da")
    with pytest.raises(GatewayMisconfigured, match="RPC URL"):
        load_chain_config(cfg)


def test_missing_contract_is_misconfigured():
    cfg = Settings(web3_rpc_url="http://localhost:8545", contract_address=None)
    with pytest.raises(GatewayMisconfigured, match="Contract address"):
        load_chain_config(cfg)


def test_chain_config_checksums_contract():
    cfg = Settings(
        web3_rpc_url="http://localhost:8545",
        contract_address="0xf8d623dbfa1dd1a3c904a69323df00773827c2da",
        web3_chain_id=80002,
    )
    chain_cfg = load_chain_config(cfg)
    assert chain_cfg.contract_address == "0xf8D623Dbfa1Dd1A3c904A69323df00773827C2DA"
    assert chain_cfg.chain_id == 80002
    assert chain_cfg.abi_path.name == "FileStamp.json"


# ---------- exists ----------

def test_exists_false_leaves_fields_unset(gateway):
    status = gateway.exists(_fp(1))
    assert status.exists is False
    assert status.owner is None and status.timestamp_ms is None and status.is_public is None


def test_exists_true_returns_chain_facts(chain, gateway):
    chain.add_stamp(_fp(1), TEST_ADDRESS.lower(), timestamp=1_700_000_123, is_public=False)
    status = gateway.exists("0x" + _fp(1))
    assert status.exists is True
    assert status.owner == TEST_ADDRESS
    assert status.timestamp_ms == 1_700_000_123_000
    assert status.is_public is False


def test_exists_rejects_malformed_hash(gateway):
    with pytest.raises(InvalidInput):
        gateway.exists("1234")


def test_exists_unreachable_endpoint(chain, gateway):
    chain.verify_error = requests.exceptions.ConnectionError("connection refused")
    with pytest.raises(GatewayUnavailable):
        gateway.exists(_fp(1))

    chain.verify_error = ValueError("execution reverted")
    with pytest.raises(GatewayUnavailable):
        gateway.exists(_fp(1))


# ---------- receipt ----------

def test_receipt_lookup(chain, gateway):
    rec = chain.add_stamp(_fp(2), TEST_ADDRESS)
    record = gateway.receipt(rec["transactionHash"].hex())
    assert record.block_number == rec["blockNumber"]
    assert record.gas_used == 48_211
    assert record.status == "success"
    assert record.succeeded
    assert record.tx_hash.startswith("0x") and len(record.tx_hash) == 66
    assert record.stamped == ("0x" + _fp(2),)


def test_receipt_unknown_tx(gateway):
    with pytest.raises(StampNotFound):
        gateway.receipt("0x" + "11" * 32)


# ---------- history ----------

def test_history_orders_newest_first(chain, gateway):
    for n, ts in enumerate([100, 300, 200]):
        chain.add_stamp(_fp(n), TEST_ADDRESS, timestamp=ts)

    entries = gateway.history(TEST_ADDRESS.lower())
    assert [e.timestamp_ms for e in entries] == [300_000, 200_000, 100_000]


def test_history_ties_broken_by_block_desc(chain, gateway):
    chain.add_stamp(_fp(1), TEST_ADDRESS, timestamp=500, block=4_999_000)
    chain.add_stamp(_fp(2), TEST_ADDRESS, timestamp=500, block=4_999_500)
    entries = gateway.history(TEST_ADDRESS)
    assert [e.block_number for e in entries] == [4_999_500, 4_999_000]


def test_history_filters_by_owner_and_enriches(chain, gateway):
    chain.add_stamp(_fp(1), TEST_ADDRESS, is_public=False)
    chain.add_stamp(_fp(2), OTHER_ADDRESS)

    entries = gateway.history(TEST_ADDRESS)
    assert len(entries) == 1
    e = entries[0]
    assert e.owner == TEST_ADDRESS
    assert e.file_hash == "0x" + _fp(1)
    assert e.is_public is False
    assert e.gas_used == 48_211
    assert e.status == "success"
    assert e.block_hash.startswith("0x")
    assert e.date.endswith("Z")


def test_history_default_window(chain, gateway):
    latest = chain.block_number
    gateway.history(TEST_ADDRESS)
    assert chain.log_calls == [latest - 3_000_000]


def test_history_explicit_from_block(chain, gateway):
    gateway.history(TEST_ADDRESS, from_block=123)
    assert chain.log_calls == [123]


def test_history_timeout_falls_back_to_recent_window(chain, gateway):
    chain.add_stamp(_fp(1), TEST_ADDRESS, block=1_000_000)   # outside the recent window
    chain.add_stamp(_fp(2), TEST_ADDRESS)                    # inside it
    chain.log_errors = [requests.exceptions.ReadTimeout("Read timed out")]

    entries = gateway.history(TEST_ADDRESS)

    latest = chain.block_number
    assert chain.log_calls == [latest - 3_000_000, latest - 100_000]
    assert [e.file_hash for e in entries] == ["0x" + _fp(2)]


def test_history_rpc_limit_code_falls_back(chain, gateway):
    chain.log_errors = [ValueError({"code": -32005, "message": "query returned more than 10000 results"})]
    assert gateway.history(TEST_ADDRESS) == []
    assert len(chain.log_calls) == 2


def test_history_deadline_falls_back(chain):
    gw = ChainGateway(FakeClient(chain), history_timeout=0.2)
    chain.add_stamp(_fp(3), TEST_ADDRESS)
    chain.log_delays = [1.0]  # first attempt overruns the deadline

    entries = gw.history(TEST_ADDRESS)
    assert len(entries) == 1
    assert len(chain.log_calls) == 2


def test_history_unavailable_when_both_windows_fail(chain, gateway):
    chain.log_errors = [
        requests.exceptions.ReadTimeout("Read timed out"),
        requests.exceptions.ConnectionError("reset by peer"),
    ]
    with pytest.raises(HistoryUnavailable):
        gateway.history(TEST_ADDRESS)


def test_history_non_transport_error_is_not_retried(chain, gateway):
    chain.log_errors = [ValueError("invalid filter params")]
    with pytest.raises(HistoryUnavailable):
        gateway.history(TEST_ADDRESS)
    assert len(chain.log_calls) == 1


def test_history_rejects_bad_owner(gateway):
    with pytest.raises(InvalidInput):
        gateway.history("not-an-address")


def test_narrow_policy_respects_later_start():
    policy = RangePolicy("recent", 100_000, narrow=True)
    assert policy.start_block(latest=1_000_000, requested=None) == 900_000
    assert policy.start_block(latest=1_000_000, requested=950_000) == 950_000
    assert policy.start_block(latest=1_000_000, requested=10) == 900_000
    assert RangePolicy("requested", 3_000_000).start_block(latest=50, requested=None) == 0


def test_transport_classification():
    assert is_transport_error(requests.exceptions.ReadTimeout())
    assert is_transport_error(TransportTimeout("deadline"))
    assert is_transport_error(ValueError({"code": -32002, "message": "request timed out"}))
    assert not is_transport_error(ValueError("execution reverted: File already stamped"))
