from app.searcher.block_listener import BlockListener
from app.searcher.bundle_builder import BundleBuilder
from app.searcher.candidates import BorrowEventCandidateSource, StaticCandidateSource
from app.searcher.chain_view import Web3ChainView
from app.searcher.config_loader import SearcherConfig, setup_w3
from app.searcher.exceptions import ReadError
from app.searcher.logging_config import setup_logger
from app.searcher.orchestrator import SearcherOrchestrator
from app.searcher.relay_client import RelayClient
from app.searcher.scanner import PositionScanner
from app.searcher.signer import LocalSigner

logger = setup_logger()


class SearcherManager:
    """Builds the searcher components from one config and runs them"""

    def __init__(self, config: SearcherConfig, notify: bool = True):
        self.config = config
        self.w3 = setup_w3(config.rpc_url)

        # Signer initialization failure is fatal at startup.
        self.signer = LocalSigner(config.searcher_private_key)
        self.auth_signer = LocalSigner(config.relay_auth_private_key)

        self.view = Web3ChainView(self.w3, config)
        self.relay = RelayClient(config.relay_url, self.auth_signer, timeout=config.relay_timeout)
        self.scanner = PositionScanner()
        self.builder = BundleBuilder(config, self.view, self.signer, self.view.pool)

        static = StaticCandidateSource(config.candidates)
        if config.discover_borrowers:
            self.candidate_source = BorrowEventCandidateSource(
                self.view.pool,
                static,
                start_block=config.pool_deployment_block,
                batch_size=config.batch_size,
                save_path=config.save_state_path,
            )
            self.candidate_source.load_state()
        else:
            self.candidate_source = static

        self.orchestrator = SearcherOrchestrator(
            config, self.view, self.scanner, self.builder, self.relay, self.candidate_source, notify=notify
        )
        self.listener = BlockListener(self.view, self.orchestrator, poll_interval=config.poll_interval)

        logger.info(
            "SearcherManager: Initialized on %s (chain %s), searcher %s, relay auth %s, relay %s",
            config.chain_name, config.chain_id, self.signer.address, self.auth_signer.address, config.relay_url,
        )

    def start(self):
        """Backfill discovered borrowers, then run the block listener until stopped"""
        if isinstance(self.candidate_source, BorrowEventCandidateSource):
            self.backfill_candidates()
        self.listener.start_block_monitoring()

    def backfill_candidates(self):
        try:
            head = self.view.block_number()
        except ReadError as ex:
            logger.error("SearcherManager: Skipping borrower backfill, head unavailable: %s", ex)
            return
        self.candidate_source.backfill(head)

    def stop(self):
        self.listener.stop()
        self.orchestrator.stop()
