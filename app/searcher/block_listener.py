"""
Block listener.
Polls the chain head and notifies the orchestrator once per new block.
"""

import threading

from app.searcher.chain_view import ChainView
from app.searcher.exceptions import ReadError
from app.searcher.logging_config import setup_logger

logger = setup_logger()


class BlockListener:
    """
    Block event source for the SearcherOrchestrator. When the head moves by
    more than one block between polls only the newest block is emitted,
    since positions are re-derived from scratch every block anyway.
    """

    def __init__(self, view: ChainView, orchestrator, poll_interval: float = 1.0):
        self.view = view
        self.orchestrator = orchestrator
        self.poll_interval = poll_interval
        self.last_block = None
        self._stop_event = threading.Event()

    def poll_once(self) -> bool:
        """Emit the head block if it is new. Returns True when a block was emitted."""
        try:
            head = self.view.block_number()
        except ReadError as ex:
            logger.error("BlockListener: Failed to read head block: %s", ex)
            return False

        if self.last_block is not None and head <= self.last_block:
            return False

        if self.last_block is not None and head > self.last_block + 1:
            logger.info("BlockListener: Skipped blocks %s to %s", self.last_block + 1, head - 1)

        self.last_block = head
        self.orchestrator.on_new_block(head)
        return True

    def start_block_monitoring(self) -> None:
        logger.info("BlockListener: Watching for new blocks every %s seconds.", self.poll_interval)
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception as ex:
                logger.error("BlockListener: Unexpected exception in block monitoring: %s", ex, exc_info=True)

            self._stop_event.wait(self.poll_interval)

    def stop(self) -> None:
        self._stop_event.set()
