"""Shared pytest fixtures: an in-process fake of the FileStamp contract and JSON-RPC node."""

import time

import pytest
from eth_account import Account
from eth_utils import keccak, to_checksum_address
from hexbytes import HexBytes
from sqlalchemy.exc import OperationalError
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from filestamp.services.blockchain.client import DEFAULT_ABI_PATH, ChainConfig, SignerSession
from filestamp.services.blockchain.gateway import ChainGateway
from filestamp.services.db.side_store import SideStore
from filestamp.services.reconcile import MetadataReconciler

# well-known local devnet key #0; never funded on a public network
TEST_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = Account.from_key(TEST_KEY).address
OTHER_ADDRESS = to_checksum_address("0x70997970c51812dc3a010c7d01b50e0d17dc79c8")
CONTRACT_ADDRESS = to_checksum_address("0xf8d623dbfa1dd1a3c904a69323df00773827c2da")
ZERO_ADDRESS = "0x" + "00" * 20
CHAIN_ID = 31337


class _Call:
    def __init__(self, fn):
        self._fn = fn

    def call(self):
        return self._fn()


class _StampFn:
    def __init__(self, chain, file_b32, is_public):
        self.chain = chain
        self.file_b32 = bytes(file_b32)
        self.is_public = is_public

    def estimate_gas(self, params):
        if self.chain.estimate_error is not None:
            raise self.chain.estimate_error
        if self.file_b32 in self.chain.stamps:
            raise ContractLogicError("execution reverted: File already stamped")
        return 50_000

    def build_transaction(self, params):
        self.chain.last_built = (self.file_b32, self.is_public, params["from"])
        tx = dict(params)
        tx.update({"to": CONTRACT_ADDRESS, "value": 0, "data": "0x1a2b3c4d" + self.file_b32.hex()})
        return tx


class _Functions:
    def __init__(self, chain):
        self.chain = chain

    def verifyFile(self, file_b32):
        def _read():
            if self.chain.verify_error is not None:
                raise self.chain.verify_error
            s = self.chain.stamps.get(bytes(file_b32))
            if s is None:
                return [False, ZERO_ADDRESS, 0, False]
            return [True, s["owner"], s["timestamp"], s["is_public"]]
        return _Call(_read)

    def stampFile(self, file_b32, is_public):
        return _StampFn(self.chain, file_b32, is_public)


class _FileStampedEvent:
    def __init__(self, chain):
        self.chain = chain

    def __call__(self):
        return self

    def process_receipt(self, receipt, errors=None):
        return [ev for ev in self.chain.events if ev["transactionHash"] == receipt["transactionHash"]]

    def get_logs(self, argument_filters=None, from_block=None, to_block=None):
        self.chain.log_calls.append(from_block)
        if self.chain.log_delays:
            time.sleep(self.chain.log_delays.pop(0))
        if self.chain.log_errors:
            err = self.chain.log_errors.pop(0)
            if err is not None:
                raise err
        owner = (argument_filters or {}).get("owner")
        return [
            ev for ev in self.chain.events
            if ev["blockNumber"] >= (from_block or 0) and (owner is None or ev["args"]["owner"] == owner)
        ]


class _Events:
    def __init__(self, chain):
        self.FileStamped = _FileStampedEvent(chain)


class _Contract:
    def __init__(self, chain):
        self.address = CONTRACT_ADDRESS
        self.functions = _Functions(chain)
        self.events = _Events(chain)


class _Eth:
    def __init__(self, chain):
        self.chain = chain
        self.chain_id = CHAIN_ID
        self.gas_price = 1_000_000_000

    @property
    def block_number(self):
        return self.chain.block_number

    def get_transaction_count(self, address, block_identifier="latest"):
        return self.chain.nonce

    def send_raw_transaction(self, raw):
        self.chain.send_attempts += 1
        tx_hash = HexBytes(keccak(bytes(raw)))
        if self.chain.send_errors:
            err = self.chain.send_errors.pop(0)
            if self.chain.register_before_error:
                self.chain.pending[tx_hash] = self.chain.last_built
            raise err
        self.chain.pending[tx_hash] = self.chain.last_built
        return tx_hash

    def wait_for_transaction_receipt(self, tx_hash, timeout=120):
        if self.chain.wait_error is not None:
            raise self.chain.wait_error
        if HexBytes(tx_hash) not in self.chain.pending:
            raise TimeExhausted(f"Transaction {HexBytes(tx_hash).hex()} is not in the chain after {timeout} seconds")
        file_b32, is_public, sender = self.chain.pending.pop(HexBytes(tx_hash))
        self.chain.nonce += 1
        if file_b32 in self.chain.stamps:
            return self.chain.add_receipt(HexBytes(tx_hash), status=0)
        return self.chain.add_stamp(file_b32.hex(), sender, is_public=is_public, tx_hash=HexBytes(tx_hash))

    def get_transaction_receipt(self, tx_hash):
        rec = self.chain.receipts.get(HexBytes(tx_hash))
        if rec is None:
            raise TransactionNotFound(f"Transaction with hash {HexBytes(tx_hash).hex()} not found")
        return rec


class _W3:
    def __init__(self, chain):
        self.eth = _Eth(chain)
        self.connected = True

    def is_connected(self):
        return self.connected


class FakeChain:
    """Just enough of a node + FileStamp contract for the gateway and writer."""

    def __init__(self):
        self.stamps = {}
        self.events = []
        self.receipts = {}
        self.pending = {}
        self.block_number = 5_000_000
        self.now = 1_700_000_000
        self.nonce = 0
        self.last_built = None
        self.log_calls = []
        self.log_errors = []
        self.log_delays = []
        self.send_errors = []
        self.send_attempts = 0
        self.register_before_error = False
        self.estimate_error = None
        self.verify_error = None
        self.wait_error = None
        self.w3 = _W3(self)
        self.contract = _Contract(self)

    def add_receipt(self, tx_hash, status=1, gas_used=48_211, block=None):
        block = block if block is not None else self.block_number
        rec = {
            "transactionHash": tx_hash,
            "blockNumber": block,
            "blockHash": HexBytes(keccak(text=f"block-{block}")),
            "gasUsed": gas_used,
            "status": status,
        }
        self.receipts[tx_hash] = rec
        return rec

    def add_stamp(self, fp_hex, owner, *, timestamp=None, is_public=True, block=None, tx_hash=None):
        """Seed a confirmed stamp with its event and receipt; returns the receipt."""
        file_b32 = bytes.fromhex(fp_hex.removeprefix("0x"))
        owner = to_checksum_address(owner)
        self.block_number += 1
        block = block if block is not None else self.block_number
        timestamp = timestamp if timestamp is not None else self.now + block
        tx_hash = tx_hash or HexBytes(keccak(file_b32 + b"tx"))
        self.stamps[file_b32] = {"owner": owner, "timestamp": timestamp, "is_public": is_public}
        self.events.append({
            "args": {"fileHash": HexBytes(file_b32), "owner": owner, "timestamp": timestamp, "isPublic": is_public},
            "transactionHash": tx_hash,
            "blockNumber": block,
            "blockHash": HexBytes(keccak(text=f"block-{block}")),
        })
        return self.add_receipt(tx_hash, block=block)


class FakeClient:
    def __init__(self, chain, private_key=TEST_KEY):
        self.w3 = chain.w3
        self.contract = chain.contract
        self.cfg = ChainConfig(
            rpc_url="http://fake-rpc",
            contract_address=CONTRACT_ADDRESS,
            abi_path=DEFAULT_ABI_PATH,
            chain_id=CHAIN_ID,
            private_key=private_key,
        )

    def is_connected(self):
        return self.w3.is_connected()

    def get_chain_id(self):
        return CHAIN_ID


class BrokenStore:
    """A side-store whose every call hits a database outage."""

    def _fail(self, *args, **kwargs):
        raise OperationalError("INSERT INTO stamps", {}, Exception("database is locked"))

    insert = get = list_by_owner = _fail


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def gateway(chain):
    return ChainGateway(FakeClient(chain), history_timeout=5.0)


@pytest.fixture
def session():
    return SignerSession.from_private_key(TEST_KEY, CHAIN_ID)


@pytest.fixture
def side_store():
    return SideStore.from_url("sqlite://")


@pytest.fixture
def reconciler(side_store):
    return MetadataReconciler(side_store)
