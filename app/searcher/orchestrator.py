"""
SearcherOrchestrator - the per-block control loop.

Each new block is scanned once; every liquidatable position then runs its own
pipeline on the worker pool:

    build -> sign -> simulate -> profit gate -> submit -> (delayed) status check

Failures are scoped to one position. Pipelines from earlier blocks are never
cancelled, and the status check is a timer, so the next block is never
waiting on a previous one.
"""

import threading
from collections import deque
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from app.searcher.bundle_builder import BundleBuilder
from app.searcher.chain_view import ChainView
from app.searcher.config_loader import SearcherConfig
from app.searcher.exceptions import BuildError, ReadError, RelayClientError, SigningError
from app.searcher.logging_config import setup_logger
from app.searcher.models import (
    BlockContext,
    Bundle,
    OpportunityOutcome,
    OpportunityState,
    Position,
    SubmissionReceipt,
)
from app.searcher.notifications import (
    post_bundle_outcome_notification,
    post_bundle_submitted_notification,
    post_error_notification,
)
from app.searcher.relay_client import RelayClient
from app.searcher.scanner import PositionScanner

logger = setup_logger()

Scheduler = Callable[..., Any]

FAILURE_STATES = {OpportunityState.BUILD_FAILED, OpportunityState.SUBMIT_FAILED}


def start_timer(delay: float, fn: Callable, *args: Any) -> threading.Timer:
    """Run fn(*args) once after delay seconds on a daemon timer thread."""
    timer = threading.Timer(delay, fn, args=args)
    timer.daemon = True
    timer.start()
    return timer


class SearcherOrchestrator:
    def __init__(
        self,
        config: SearcherConfig,
        view: ChainView,
        scanner: PositionScanner,
        builder: BundleBuilder,
        relay: RelayClient,
        candidate_source,
        executor: Optional[Executor] = None,
        scheduler: Scheduler = start_timer,
        notify: bool = False,
    ):
        self.config = config
        self.view = view
        self.scanner = scanner
        self.builder = builder
        self.relay = relay
        self.candidate_source = candidate_source
        self.executor = executor or ThreadPoolExecutor(max_workers=config.max_workers)
        self.scheduler = scheduler
        self.notify = notify and bool(config.notification_url)

        self.latest_block = 0
        self.in_flight = 0
        self.pending_checks = 0
        self.recent_outcomes = deque(maxlen=config.recent_outcomes_size)
        self._lock = threading.Lock()

    def on_new_block(self, block_number: int) -> Future:
        """Block event entry point. Hands the block to the pool and returns at once."""
        logger.info("Orchestrator: New block %s", block_number)
        return self.executor.submit(self.process_block, block_number)

    def process_block(self, block_number: int) -> List[Future]:
        """Scan candidates at block_number and start one pipeline per liquidatable position."""
        with self._lock:
            self.latest_block = max(self.latest_block, block_number)

        try:
            block_context = self.view.get_block_context(block_number)
        except ReadError as ex:
            logger.error("Orchestrator: Skipping block %s, block context unavailable: %s", block_number, ex)
            return []

        try:
            candidates = self.candidate_source.get_candidates(block_number)
        except Exception as ex:
            logger.error("Orchestrator: Failed to load candidates at block %s: %s", block_number, ex, exc_info=True)
            return []

        positions = self.scanner.scan(candidates, self.view, block_number)
        if not positions:
            logger.info("Orchestrator: No liquidatable positions at block %s", block_number)
            return []

        return [self.executor.submit(self.run_pipeline, position, block_context) for position in positions]

    def run_pipeline(
        self, position: Position, block_context: BlockContext, builder_tip_wei: Optional[int] = None
    ) -> OpportunityOutcome:
        with self._lock:
            self.in_flight += 1
        try:
            return self._run_pipeline(position, block_context, builder_tip_wei)
        finally:
            with self._lock:
                self.in_flight -= 1

    def _run_pipeline(
        self, position: Position, block_context: BlockContext, builder_tip_wei: Optional[int]
    ) -> OpportunityOutcome:
        block_number = position.block_number if position.block_number is not None else block_context.number
        target_block = self.builder.target_block(block_context)

        def finish(state: OpportunityState, reason: str = "", **kwargs) -> OpportunityOutcome:
            return self._record(
                OpportunityOutcome(
                    borrower=position.borrower,
                    block_number=block_number,
                    target_block=target_block,
                    state=state,
                    reason=reason,
                    **kwargs,
                )
            )

        self._transition(position, block_number, OpportunityState.SCANNED)

        try:
            tx = self.builder.build(position, block_context, builder_tip_wei)
            bundle = self.builder.sign_bundle(tx, target_block)
        except (BuildError, SigningError) as ex:
            return finish(OpportunityState.BUILD_FAILED, f"build failed: {ex}")
        except Exception as ex:
            logger.error("Orchestrator: Unexpected error building bundle for %s: %s", position.borrower, ex, exc_info=True)
            self._notify(post_error_notification, f"Unexpected error building bundle for {position.borrower}: {ex}")
            return finish(OpportunityState.BUILD_FAILED, f"build failed: {ex}")

        self._transition(position, block_number, OpportunityState.BUILT)

        try:
            simulation = self.relay.simulate_bundle(bundle)
        except RelayClientError as ex:
            return finish(OpportunityState.GATED_OUT, f"simulation failed: {ex}")
        except Exception as ex:
            logger.error("Orchestrator: Unexpected error simulating bundle for %s: %s", position.borrower, ex, exc_info=True)
            self._notify(post_error_notification, f"Unexpected error simulating bundle for {position.borrower}: {ex}")
            return finish(OpportunityState.GATED_OUT, f"simulation failed: {ex}")

        if not simulation.success:
            return finish(OpportunityState.GATED_OUT, f"simulation failed: {simulation.failure_reason}")

        self._transition(position, block_number, OpportunityState.SIMULATED)
        logger.info(
            "Orchestrator: Simulated bundle for %s: gasUsed=%s profit=%s",
            position.borrower, simulation.gas_used, simulation.profit,
        )

        if simulation.profit < self.config.min_profit_wei:
            return finish(
                OpportunityState.GATED_OUT,
                f"profit below threshold: {simulation.profit} < {self.config.min_profit_wei}",
                profit=simulation.profit,
            )

        try:
            receipt = self.relay.send_bundle(bundle)
        except RelayClientError as ex:
            return finish(OpportunityState.SUBMIT_FAILED, f"submit failed: {ex}", profit=simulation.profit)
        except Exception as ex:
            logger.error("Orchestrator: Unexpected error submitting bundle for %s: %s", position.borrower, ex, exc_info=True)
            self._notify(post_error_notification, f"Unexpected error submitting bundle for {position.borrower}: {ex}")
            return finish(OpportunityState.SUBMIT_FAILED, f"submit failed: {ex}", profit=simulation.profit)

        if not receipt.accepted:
            return finish(OpportunityState.SUBMIT_FAILED, "submit failed: relay did not accept bundle", profit=simulation.profit)

        outcome = finish(OpportunityState.SUBMITTED, bundle_hash=receipt.bundle_hash, profit=simulation.profit)
        self._notify(post_bundle_submitted_notification, outcome)
        self._schedule_status_check(position, bundle, receipt, outcome)
        return outcome

    def _schedule_status_check(
        self, position: Position, bundle: Bundle, receipt: SubmissionReceipt, submitted: OpportunityOutcome
    ) -> None:
        with self._lock:
            self.pending_checks += 1
        try:
            self.scheduler(self.config.status_check_delay, self.check_status, position, bundle, receipt, submitted)
        except Exception as ex:
            with self._lock:
                self.pending_checks -= 1
            logger.error("Orchestrator: Failed to schedule status check for %s: %s", receipt.bundle_hash, ex, exc_info=True)

    def check_status(
        self, position: Position, bundle: Bundle, receipt: SubmissionReceipt, submitted: OpportunityOutcome
    ) -> OpportunityOutcome:
        """
        One status query per bundle. An error or a query outliving the delay
        window counts as not included; there is no polling and no resubmission.
        """
        try:
            try:
                status = self.relay.get_bundle_stats(
                    receipt.bundle_hash, bundle.target_block, timeout=self.config.status_check_delay
                )
                state = OpportunityState.INCLUDED if status.included else OpportunityState.NOT_INCLUDED
                reason = "" if status.included else "bundle not included"
            except RelayClientError as ex:
                state = OpportunityState.NOT_INCLUDED
                reason = f"status check failed: {ex}"
            except Exception as ex:
                logger.error("Orchestrator: Unexpected error checking bundle %s: %s", receipt.bundle_hash, ex, exc_info=True)
                self._notify(post_error_notification, f"Unexpected error checking bundle {receipt.bundle_hash}: {ex}")
                state = OpportunityState.NOT_INCLUDED
                reason = f"status check failed: {ex}"

            outcome = self._record(
                OpportunityOutcome(
                    borrower=position.borrower,
                    block_number=submitted.block_number,
                    target_block=bundle.target_block,
                    state=state,
                    reason=reason,
                    bundle_hash=receipt.bundle_hash,
                    profit=submitted.profit,
                )
            )
            self._notify(post_bundle_outcome_notification, outcome)
            return outcome
        finally:
            with self._lock:
                self.pending_checks -= 1

    def _record(self, outcome: OpportunityOutcome) -> OpportunityOutcome:
        with self._lock:
            self.recent_outcomes.append(outcome)

        log = logger.warning if outcome.state in FAILURE_STATES else logger.info
        log(
            "Orchestrator: outcome=%s borrower=%s block=%s target=%s bundle=%s reason=%s",
            outcome.state.value, outcome.borrower, outcome.block_number, outcome.target_block,
            outcome.bundle_hash or "-", outcome.reason or "-",
            extra={"outcome": outcome.to_dict()},
        )
        return outcome

    def _transition(self, position: Position, block_number: int, state: OpportunityState) -> None:
        logger.debug(
            "Orchestrator: borrower=%s block=%s state=%s", position.borrower, block_number, state.value,
            extra={"state": state.value},
        )

    def _notify(self, post: Callable, subject: Any) -> None:
        if not self.notify:
            return
        try:
            post(subject, self.config)
        except Exception as ex:
            logger.error("Orchestrator: Failed to post notification: %s", ex, exc_info=True)

    def get_recent_outcomes(self, limit: Optional[int] = None) -> List[OpportunityOutcome]:
        """Recorded outcomes, newest first."""
        with self._lock:
            outcomes = list(reversed(self.recent_outcomes))
        return outcomes[:limit] if limit is not None else outcomes

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "chain_id": self.config.chain_id,
                "latest_block": self.latest_block,
                "in_flight": self.in_flight,
                "pending_checks": self.pending_checks,
                "min_profit_wei": self.config.min_profit_wei,
                "max_gas_price_wei": self.config.max_gas_price_wei,
                "builder_tip_wei": self.config.builder_tip_wei,
            }

    def stop(self) -> None:
        self.executor.shutdown(wait=True)
