"""
PositionScanner - classifies candidate borrowers into liquidatable positions.
"""

from typing import Iterable, List, Optional

from app.searcher.chain_view import ChainView
from app.searcher.exceptions import ReadError
from app.searcher.logging_config import setup_logger
from app.searcher.models import ONE, Position

logger = setup_logger()


class PositionScanner:
    """
    Reads every candidate independently and keeps those with a health factor
    strictly below ONE. A failing candidate is dropped, never the whole scan.
    Output follows candidate order.
    """

    def scan(self, candidates: Iterable[str], view: ChainView, block_number: Optional[int] = None) -> List[Position]:
        positions = []
        seen = set()

        for candidate in candidates:
            key = candidate.lower()
            if key in seen:
                continue
            seen.add(key)

            try:
                health = view.get_account_health(candidate, block_number)
            except ReadError as ex:
                logger.debug("Scanner: Skipping %s: %s", candidate, ex)
                continue
            except Exception as ex:
                logger.error("Scanner: Unexpected error reading %s: %s", candidate, ex, exc_info=True)
                continue

            position = Position(
                borrower=candidate,
                health_factor=health.health_factor,
                total_debt=health.debt,
                total_collateral=health.collateral,
                collateral_asset=health.collateral_asset,
                debt_asset=health.debt_asset,
                block_number=block_number,
            )
            if not position.is_liquidatable:
                continue

            positions.append(position)
            logger.info(
                "Scanner: Found liquidatable position %s hf=%.6f debt=%s collateral=%s at block %s",
                candidate, health.health_factor / ONE, health.debt, health.collateral, block_number,
            )

        logger.info("Scanner: %s/%s candidates liquidatable at block %s", len(positions), len(seen), block_number)
        return positions
