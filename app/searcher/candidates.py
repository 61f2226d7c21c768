"""
Candidate borrower sources.
Scans Borrow events from the lending pool to discover borrowers, on top of
the statically configured candidates.
"""

import json
import os
import threading
import time
from pathlib import Path
from typing import Iterable, List, Optional

from web3 import Web3
from web3.contract import Contract

from app.searcher.logging_config import setup_logger

logger = setup_logger()

STATE_VERSION = 1
SAVE_EVERY_BATCHES = 20


class StaticCandidateSource:
    """Fixed candidate list, checksummed and de-duplicated in order."""

    def __init__(self, addresses: Iterable[str]):
        self.addresses: List[str] = []
        seen = set()
        for address in addresses:
            checksummed = Web3.to_checksum_address(address)
            if checksummed in seen:
                continue
            seen.add(checksummed)
            self.addresses.append(checksummed)

    def get_candidates(self, block_number: Optional[int] = None) -> List[str]:
        return list(self.addresses)


class BorrowEventCandidateSource:
    """
    Discovers borrowers from the pool's Borrow events (onBehalfOf).

    The history from the deployment block is scanned once at startup by
    backfill(). After that each block advances the scan by at most one batch,
    and never waits for a scan already running on another thread: the block
    gets the borrowers known so far. Static candidates come first, discovered
    ones follow in first-seen order.

    Scan progress and discovered borrowers are saved to save_path, so a
    restart resumes where the last run stopped.
    """

    def __init__(
        self,
        pool: Contract,
        static: StaticCandidateSource,
        start_block: int,
        batch_size: int = 5000,
        save_path: Optional[str] = None,
    ):
        self.pool = pool
        self.static = static
        self.batch_size = batch_size
        self.save_path = save_path
        self.next_block = start_block
        self.discovered: List[str] = []
        self._seen = set(static.addresses)
        # _scan_lock serializes get_logs scans; _lock guards the borrower list.
        self._scan_lock = threading.Lock()
        self._lock = threading.Lock()

    def get_candidates(self, block_number: Optional[int] = None) -> List[str]:
        if block_number is not None:
            self.scan_up_to(block_number, max_batches=1, blocking=False)
        with self._lock:
            return self.static.get_candidates() + list(self.discovered)

    def backfill(self, end_block: int) -> bool:
        """Scan all Borrow events up to end_block. Returns True when the range was fully scanned."""
        start_block = self.next_block
        logger.info("BorrowEventCandidateSource: Backfilling Borrow events from %s to %s", start_block, end_block)
        complete = self.scan_up_to(end_block)
        self.save_state()
        logger.info(
            "BorrowEventCandidateSource: Backfill %s at block %s, %s borrowers discovered",
            "complete" if complete else "stopped", self.next_block - 1, len(self.discovered),
        )
        return complete

    def scan_up_to(self, end_block: int, max_batches: Optional[int] = None, blocking: bool = True) -> bool:
        """
        Scan Borrow events from next_block up to end_block, at most max_batches batches.

        With blocking=False the call returns at once when another scan holds the
        lock. A failed batch stops the scan and is retried on the next call.

        Returns:
            bool: True if everything up to end_block has been scanned.
        """
        if not self._scan_lock.acquire(blocking=blocking):
            logger.debug("BorrowEventCandidateSource: Scan already running, skipping block %s", end_block)
            return False

        try:
            batches = 0
            found = 0
            while self.next_block <= end_block and (max_batches is None or batches < max_batches):
                batch_end = min(self.next_block + self.batch_size - 1, end_block)
                try:
                    logs = self.pool.events.Borrow().get_logs(from_block=self.next_block, to_block=batch_end)
                except Exception as ex:
                    logger.error(
                        "BorrowEventCandidateSource: Exception scanning blocks %s to %s: %s",
                        self.next_block, batch_end, ex, exc_info=True,
                    )
                    break

                found += self._add_borrowers(logs, self.next_block, batch_end)
                self.next_block = batch_end + 1
                batches += 1
                if batches % SAVE_EVERY_BATCHES == 0:
                    self.save_state()

            if found:
                self.save_state()
            return self.next_block > end_block
        finally:
            self._scan_lock.release()

    def _add_borrowers(self, logs, from_block: int, to_block: int) -> int:
        new_borrowers = 0
        with self._lock:
            for log in logs:
                borrower = Web3.to_checksum_address(log["args"]["onBehalfOf"])
                if borrower in self._seen:
                    continue
                self._seen.add(borrower)
                self.discovered.append(borrower)
                new_borrowers += 1

        if new_borrowers:
            logger.info(
                "BorrowEventCandidateSource: Found %s new borrowers in blocks %s to %s (%s total)",
                new_borrowers, from_block, to_block, len(self.discovered),
            )
        return new_borrowers

    def save_state(self) -> None:
        if not self.save_path:
            return

        try:
            with self._lock:
                state = {
                    "version": STATE_VERSION,
                    "next_block": self.next_block,
                    "discovered": list(self.discovered),
                }

            Path(self.save_path).parent.mkdir(parents=True, exist_ok=True)
            with open(self.save_path, "w", encoding="utf-8") as f:
                json.dump(state, f)

            logger.info(
                "BorrowEventCandidateSource: State saved at time %s up to block %s",
                time.strftime('%Y-%m-%d %H:%M:%S', time.localtime()), state["next_block"] - 1,
            )
        except Exception as ex:
            logger.error("BorrowEventCandidateSource: Failed to save state: %s", ex, exc_info=True)

    def load_state(self) -> None:
        """Resume from a saved state file, if there is one."""
        if not self.save_path:
            return

        if not os.path.exists(self.save_path):
            logger.info("BorrowEventCandidateSource: No saved state found.")
            return

        try:
            with open(self.save_path, "r", encoding="utf-8") as f:
                state = json.load(f)
        except (json.JSONDecodeError, IOError) as ex:
            logger.error("BorrowEventCandidateSource: Corrupt state file, starting fresh: %s", ex)
            return

        state_version = state.get("version")
        if state_version != STATE_VERSION:
            logger.warning(
                "BorrowEventCandidateSource: State version mismatch (got %s, expected %s)", state_version, STATE_VERSION
            )

        try:
            next_block = int(state["next_block"])
            borrowers = [Web3.to_checksum_address(address) for address in state["discovered"]]
        except (KeyError, TypeError, ValueError) as ex:
            logger.error("BorrowEventCandidateSource: Invalid state file, starting fresh: %s", ex)
            return

        with self._scan_lock, self._lock:
            self.next_block = max(self.next_block, next_block)
            for borrower in borrowers:
                if borrower in self._seen:
                    continue
                self._seen.add(borrower)
                self.discovered.append(borrower)

        logger.info(
            "BorrowEventCandidateSource: Loaded %s borrowers, resuming from block %s", len(self.discovered), self.next_block
        )
