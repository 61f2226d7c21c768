"""
BundleBuilder - turns a liquidatable position into a liquidationCall
request with an EIP-1559 bid, and signs it into a single-block bundle.
"""

from typing import Optional

from web3 import Web3
from web3.contract import Contract

from app.searcher.chain_view import ChainView
from app.searcher.config_loader import SearcherConfig
from app.searcher.exceptions import BuildError, ReadError
from app.searcher.logging_config import setup_logger
from app.searcher.models import BlockContext, Bundle, Position, UnsignedLiquidationTx
from app.searcher.signer import Signer

logger = setup_logger()


class BundleBuilder:
    def __init__(self, config: SearcherConfig, view: ChainView, signer: Signer, pool: Contract):
        self.config = config
        self.view = view
        self.signer = signer
        self.pool = pool

    def build(
        self, position: Position, block_context: BlockContext, builder_tip_wei: Optional[int] = None
    ) -> UnsignedLiquidationTx:
        """
        Build the unsigned liquidation request for a position.

        Args:
            position: Position to liquidate, covering its full debt.
            block_context: Block the position was scanned at; supplies the base fee.
            builder_tip_wei: Priority fee for this submission, defaults to the configured tip.

        Raises:
            BuildError: if the nonce cannot be read or the bid does not fit under the fee ceiling.
        """
        tip = self.config.builder_tip_wei if builder_tip_wei is None else int(builder_tip_wei)
        max_fee_per_gas = self._max_fee_per_gas(block_context.base_fee_per_gas, tip)

        try:
            nonce = self.view.get_nonce(self.signer.address, block_context.number)
        except ReadError as ex:
            raise BuildError(f"Nonce lookup failed for {self.signer.address}: {ex}") from ex

        try:
            data = self.pool.encode_abi(
                "liquidationCall",
                args=[
                    Web3.to_checksum_address(position.collateral_asset),
                    Web3.to_checksum_address(position.debt_asset),
                    Web3.to_checksum_address(position.borrower),
                    position.total_debt,
                    self.config.receive_a_token,
                ],
            )
        except Exception as ex:
            raise BuildError(f"Failed to encode liquidationCall for {position.borrower}: {ex}") from ex

        tx = UnsignedLiquidationTx(
            borrower=position.borrower,
            to=self.pool.address,
            data=data,
            gas=self.config.gas_limit,
            max_fee_per_gas=max_fee_per_gas,
            max_priority_fee_per_gas=tip,
            nonce=nonce,
            chain_id=self.config.chain_id,
            debt_to_cover=position.total_debt,
        )
        logger.info(
            "BundleBuilder: Built liquidation of %s covering %s of %s, nonce=%s maxFee=%s tip=%s",
            position.borrower, position.total_debt, position.debt_asset, nonce, max_fee_per_gas, tip,
        )
        return tx

    def sign_bundle(self, tx: UnsignedLiquidationTx, target_block: int) -> Bundle:
        """Sign the request through the Signer and wrap it for target_block. SigningError propagates."""
        signed = self.signer.sign_transaction(tx.as_transaction())
        return Bundle(transactions=(signed,), target_block=target_block)

    def target_block(self, block_context: BlockContext) -> int:
        return block_context.number + self.config.target_block_offset

    def _max_fee_per_gas(self, base_fee: int, tip: int) -> int:
        ceiling = self.config.max_gas_price_wei
        if tip < 0:
            raise BuildError(f"Builder tip must not be negative, got {tip}")
        if tip > ceiling:
            raise BuildError(f"Builder tip {tip} exceeds fee ceiling {ceiling}")
        if base_fee + tip > ceiling:
            raise BuildError(f"Base fee {base_fee} plus tip {tip} exceeds fee ceiling {ceiling}")
        return min(ceiling, 2 * base_fee + tip)
