import os
from concurrent.futures import Executor, Future
from typing import Dict, Optional

import pytest
from dotenv import load_dotenv
from web3 import Web3

from app.searcher.bundle_builder import BundleBuilder
from app.searcher.chain_view import ChainView
from app.searcher.config_loader import SearcherConfig, load_searcher_config
from app.searcher.contracts import load_abi
from app.searcher.exceptions import NotFoundError
from app.searcher.models import AccountHealth, BlockContext, Bundle, InclusionStatus, SimulationResult, SubmissionReceipt
from app.searcher.signer import LocalSigner

TEST_CHAIN_ID = 1
ENV_EXAMPLE_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env.example")

WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"

BORROWER_X = Web3.to_checksum_address("0x" + "11" * 20)
BORROWER_Y = Web3.to_checksum_address("0x" + "22" * 20)
BORROWER_Z = Web3.to_checksum_address("0x" + "33" * 20)
UNKNOWN = Web3.to_checksum_address("0x" + "44" * 20)

BLOCK_NUMBER = 19_000_000
BASE_FEE = 20 * 10**9


class FakeChainView(ChainView):
    """In-memory ChainView. healths maps address to AccountHealth or an exception to raise."""

    def __init__(self, healths: Optional[Dict] = None, head: int = BLOCK_NUMBER, base_fee: int = BASE_FEE, nonce=7):
        self.healths = dict(healths or {})
        self.head = head
        self.base_fee = base_fee
        self.nonce = nonce
        self.reads = []

    def block_number(self) -> int:
        if isinstance(self.head, Exception):
            raise self.head
        return self.head

    def get_block_context(self, block_number: int) -> BlockContext:
        return BlockContext(number=block_number, base_fee_per_gas=self.base_fee, timestamp=1_700_000_000)

    def get_account_health(self, address: str, block_number: Optional[int] = None) -> AccountHealth:
        self.reads.append(address)
        health = self.healths.get(address)
        if health is None:
            raise NotFoundError(f"{address} has no position")
        if isinstance(health, Exception):
            raise health
        return health

    def get_nonce(self, address: str, block_number: Optional[int] = None) -> int:
        if isinstance(self.nonce, Exception):
            raise self.nonce
        return self.nonce


class FakeRelay:
    """Records relay calls and answers with preset results."""

    def __init__(self, simulation=None, receipt=None, stats=None):
        self.simulation = simulation or SimulationResult(success=True, gas_used=350_000, profit=2 * 10**16)
        self.receipt = receipt or SubmissionReceipt(bundle_hash="0xbundle", accepted=True)
        self.stats = stats
        self.simulated = []
        self.sent = []
        self.checked = []

    def simulate_bundle(self, bundle: Bundle) -> SimulationResult:
        self.simulated.append(bundle)
        if isinstance(self.simulation, Exception):
            raise self.simulation
        return self.simulation

    def send_bundle(self, bundle: Bundle) -> SubmissionReceipt:
        self.sent.append(bundle)
        if isinstance(self.receipt, Exception):
            raise self.receipt
        return self.receipt

    def get_bundle_stats(self, bundle_hash: str, target_block: int, timeout=None) -> InclusionStatus:
        self.checked.append((bundle_hash, target_block, timeout))
        if isinstance(self.stats, Exception):
            raise self.stats
        if self.stats is None:
            return InclusionStatus(bundle_hash=bundle_hash, target_block=target_block, included=False)
        return self.stats


class ImmediateExecutor(Executor):
    """Runs submitted work inline so tests stay deterministic."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as ex:
            future.set_exception(ex)
        return future


class RecordingScheduler:
    def __init__(self):
        self.calls = []

    def __call__(self, delay, fn, *args):
        self.calls.append((delay, fn, args))

    def run_all(self):
        results = [fn(*args) for _, fn, args in self.calls]
        self.calls = []
        return results


def unhealthy(hf: int, debt: int = 1000 * 10**6, collateral: int = 10**18) -> AccountHealth:
    return AccountHealth(collateral=collateral, debt=debt, health_factor=hf, collateral_asset=WETH, debt_asset=USDC)


@pytest.fixture()
def config() -> SearcherConfig:
    load_dotenv(dotenv_path=ENV_EXAMPLE_PATH)
    return load_searcher_config(TEST_CHAIN_ID)


@pytest.fixture()
def signer(config) -> LocalSigner:
    return LocalSigner(config.searcher_private_key)


@pytest.fixture()
def auth_signer(config) -> LocalSigner:
    return LocalSigner(config.relay_auth_private_key)


@pytest.fixture()
def pool(config):
    return Web3().eth.contract(address=config.pool_address, abi=load_abi(config.pool_abi_path))


@pytest.fixture()
def block_context() -> BlockContext:
    return BlockContext(number=BLOCK_NUMBER, base_fee_per_gas=BASE_FEE, timestamp=1_700_000_000)


@pytest.fixture()
def make_builder(config, signer, pool):
    def _make(view, cfg=None):
        return BundleBuilder(cfg or config, view, signer, pool)

    return _make
