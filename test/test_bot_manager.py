"""
Tests for SearcherManager startup ordering.
"""

from unittest.mock import MagicMock

import pytest

from app.searcher.bot_manager import SearcherManager
from app.searcher.candidates import BorrowEventCandidateSource
from app.searcher.exceptions import ReadError


@pytest.fixture()
def manager(config, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    searcher = SearcherManager(config, notify=False)
    yield searcher
    searcher.orchestrator.stop()


def _wire(manager, head):
    calls = []
    manager.view = MagicMock()
    if isinstance(head, Exception):
        manager.view.block_number.side_effect = head
    else:
        manager.view.block_number.return_value = head
    manager.candidate_source = MagicMock(spec=BorrowEventCandidateSource)
    manager.candidate_source.backfill.side_effect = lambda end_block: calls.append(("backfill", end_block))
    manager.listener = MagicMock()
    manager.listener.start_block_monitoring.side_effect = lambda: calls.append(("monitor",))
    return calls


def test_discovery_source_is_built_from_config(manager, config):
    assert isinstance(manager.candidate_source, BorrowEventCandidateSource)
    assert manager.candidate_source.next_block == config.pool_deployment_block
    assert manager.candidate_source.save_path == config.save_state_path


def test_backfill_runs_before_block_monitoring(manager):
    calls = _wire(manager, 23_500_000)
    manager.start()
    assert calls == [("backfill", 23_500_000), ("monitor",)]


def test_unavailable_head_skips_backfill(manager):
    calls = _wire(manager, ReadError("rpc down"))
    manager.start()
    assert calls == [("monitor",)]
