"""
Data classes passed between the searcher components.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

# Health factors are 18-decimal fixed point; below ONE the position can be liquidated.
ONE = 10**18


@dataclass(frozen=True)
class AccountHealth:
    """
    Health snapshot of one borrower as read from the lending pool.
    Healthy accounts carry no resolved assets and zero amounts.
    """

    collateral: int
    debt: int
    health_factor: int
    collateral_asset: str = ""
    debt_asset: str = ""


@dataclass(frozen=True)
class Position:
    """A borrower's credit state at a block height."""

    borrower: str
    health_factor: int
    total_debt: int
    total_collateral: int
    collateral_asset: str
    debt_asset: str
    block_number: Optional[int] = None

    @property
    def is_liquidatable(self) -> bool:
        return self.health_factor < ONE


@dataclass(frozen=True)
class BlockContext:
    number: int
    base_fee_per_gas: int
    timestamp: int = 0


@dataclass(frozen=True)
class UnsignedLiquidationTx:
    """Unsigned liquidationCall request plus the gas bid."""

    borrower: str
    to: str
    data: str
    gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    nonce: int
    chain_id: int
    debt_to_cover: int
    value: int = 0

    def as_transaction(self) -> Dict[str, Any]:
        """EIP-1559 transaction dict in the shape eth-account signs."""
        return {
            "type": 2,
            "chainId": self.chain_id,
            "nonce": self.nonce,
            "to": self.to,
            "value": self.value,
            "data": self.data,
            "gas": self.gas,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
        }


@dataclass(frozen=True)
class Bundle:
    """Ordered signed transactions valid for a single target block."""

    transactions: Tuple[str, ...]
    target_block: int
    min_timestamp: Optional[int] = None
    max_timestamp: Optional[int] = None

    def __post_init__(self):
        # Accept any sequence but store it immutably.
        object.__setattr__(self, "transactions", tuple(self.transactions))


@dataclass(frozen=True)
class SimulationResult:
    success: bool
    gas_used: int = 0
    profit: int = 0
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class SubmissionReceipt:
    bundle_hash: str
    accepted: bool


@dataclass(frozen=True)
class InclusionStatus:
    bundle_hash: str
    target_block: int
    included: bool
    included_at_block: Optional[int] = None


class OpportunityState(str, Enum):
    # Intermediate states are logged as transitions, never recorded as outcomes.
    SCANNED = "scanned"
    BUILT = "built"
    SIMULATED = "simulated"
    GATED_OUT = "gated_out"
    BUILD_FAILED = "build_failed"
    SUBMIT_FAILED = "submit_failed"
    SUBMITTED = "submitted"
    INCLUDED = "included"
    NOT_INCLUDED = "not_included"


@dataclass(frozen=True)
class OpportunityOutcome:
    """Where one opportunity ended up in the bundle lifecycle."""

    borrower: str
    block_number: int
    state: OpportunityState
    reason: str = ""
    target_block: Optional[int] = None
    bundle_hash: str = ""
    profit: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data
