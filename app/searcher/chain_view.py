"""
Read-only view of the chain: block head, block context, borrower health and nonces.
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple, Union

from web3 import Web3

from app.searcher.config_loader import Reserve, SearcherConfig
from app.searcher.contracts import create_contract_instance
from app.searcher.exceptions import NotFoundError, ReadError
from app.searcher.logging_config import setup_logger
from app.searcher.models import ONE, AccountHealth, BlockContext

logger = setup_logger()

BlockIdentifier = Union[int, str]


class ChainView(ABC):
    """
    Read capability shared by all in-flight pipelines.
    Implementations must not mutate shared state as a side effect of a read.
    """

    @abstractmethod
    def block_number(self) -> int:
        """Current head block number."""

    @abstractmethod
    def get_block_context(self, block_number: int) -> BlockContext:
        """Number, base fee and timestamp of a block."""

    @abstractmethod
    def get_account_health(self, address: str, block_number: Optional[int] = None) -> AccountHealth:
        """
        Health snapshot of a borrower. Raises NotFoundError for unknown accounts, ReadError otherwise.
        Collateral and debt assets are only resolved when the health factor is below ONE.
        """

    @abstractmethod
    def get_nonce(self, address: str, block_number: Optional[int] = None) -> int:
        """Transaction count of an address."""


class Web3ChainView(ChainView):
    """
    ChainView over an Aave v3 style lending pool.

    The pool reports health in base currency only; the collateral and debt
    assets are resolved from the configured reserves through the protocol
    data provider, valued with the pool's price oracle.
    """

    def __init__(self, w3: Web3, config: SearcherConfig):
        self.w3 = w3
        self.config = config
        self.reserves = config.reserves
        self.pool = create_contract_instance(config.pool_address, config.pool_abi_path, w3)
        self.data_provider = create_contract_instance(config.data_provider_address, config.data_provider_abi_path, w3)
        self.oracle = create_contract_instance(config.oracle_address, config.oracle_abi_path, w3)

    def block_number(self) -> int:
        try:
            return int(self.w3.eth.block_number)
        except Exception as ex:
            raise ReadError(f"Failed to read block number: {ex}") from ex

    def get_block_context(self, block_number: int) -> BlockContext:
        try:
            block = self.w3.eth.get_block(block_number)
        except Exception as ex:
            raise ReadError(f"Failed to read block {block_number}: {ex}") from ex

        return BlockContext(
            number=int(block["number"]),
            base_fee_per_gas=int(block.get("baseFeePerGas", 0) or 0),
            timestamp=int(block.get("timestamp", 0) or 0),
        )

    def get_nonce(self, address: str, block_number: Optional[int] = None) -> int:
        block_identifier = _block_identifier(block_number)
        try:
            return int(self.w3.eth.get_transaction_count(Web3.to_checksum_address(address), block_identifier))
        except Exception as ex:
            raise ReadError(f"Failed to read nonce of {address} at {block_identifier}: {ex}") from ex

    def get_account_health(self, address: str, block_number: Optional[int] = None) -> AccountHealth:
        block_identifier = _block_identifier(block_number)
        try:
            borrower = Web3.to_checksum_address(address)
        except ValueError as ex:
            raise NotFoundError(f"Invalid borrower address {address}") from ex

        try:
            account_data = self.pool.functions.getUserAccountData(borrower).call(block_identifier=block_identifier)
        except Exception as ex:
            raise ReadError(f"getUserAccountData failed for {borrower}: {ex}") from ex

        total_collateral_base, total_debt_base, _, _, _, health_factor = account_data
        if total_collateral_base == 0 and total_debt_base == 0:
            raise NotFoundError(f"{borrower} has no position on the pool")

        health_factor = int(health_factor)
        if health_factor >= ONE:
            logger.debug("ChainView: %s hf=%s is healthy at %s", borrower, health_factor, block_identifier)
            return AccountHealth(collateral=0, debt=0, health_factor=health_factor)

        collateral, debt = self._resolve_reserves(borrower, block_identifier)
        if collateral is None:
            raise ReadError(f"No configured collateral reserve found for {borrower}")
        if debt is None:
            raise ReadError(f"No configured debt reserve found for {borrower}")

        collateral_reserve, collateral_amount = collateral
        debt_reserve, debt_amount = debt

        logger.debug(
            "ChainView: %s hf=%s collateral=%s %s debt=%s %s at %s",
            borrower, health_factor, collateral_amount, collateral_reserve.symbol,
            debt_amount, debt_reserve.symbol, block_identifier,
        )

        return AccountHealth(
            collateral=collateral_amount,
            debt=debt_amount,
            health_factor=health_factor,
            collateral_asset=collateral_reserve.address,
            debt_asset=debt_reserve.address,
        )

    def _resolve_reserves(
        self, borrower: str, block_identifier: BlockIdentifier
    ) -> Tuple[Optional[Tuple[Reserve, int]], Optional[Tuple[Reserve, int]]]:
        """Pick the reserves holding the largest collateral and debt value."""
        best_collateral = None
        best_debt = None
        best_collateral_value = -1
        best_debt_value = -1

        for reserve in self.reserves:
            try:
                reserve_data = self.data_provider.functions.getUserReserveData(reserve.address, borrower).call(
                    block_identifier=block_identifier
                )
            except Exception as ex:
                raise ReadError(f"getUserReserveData({reserve.symbol}) failed for {borrower}: {ex}") from ex

            a_token_balance = reserve_data[0]
            debt_amount = reserve_data[1] + reserve_data[2]
            usage_as_collateral = reserve_data[8]

            if not (a_token_balance > 0 and usage_as_collateral) and debt_amount == 0:
                continue

            price = self._asset_price(reserve, block_identifier)
            unit = 10**reserve.decimals

            if a_token_balance > 0 and usage_as_collateral:
                value = a_token_balance * price // unit
                if value > best_collateral_value:
                    best_collateral_value = value
                    best_collateral = (reserve, a_token_balance)

            if debt_amount > 0:
                value = debt_amount * price // unit
                if value > best_debt_value:
                    best_debt_value = value
                    best_debt = (reserve, debt_amount)

        return best_collateral, best_debt

    def _asset_price(self, reserve: Reserve, block_identifier: BlockIdentifier) -> int:
        try:
            return int(self.oracle.functions.getAssetPrice(reserve.address).call(block_identifier=block_identifier))
        except Exception as ex:
            raise ReadError(f"getAssetPrice({reserve.symbol}) failed: {ex}") from ex


def _block_identifier(block_number: Optional[int]) -> BlockIdentifier:
    return block_number if block_number is not None else "latest"
