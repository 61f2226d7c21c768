"""
Tests for the searcher log formatter.
"""

import logging
import sys

from app.searcher.logging_config import SearcherLogFormatter


def _record(level, msg, exc_info=None, **extra):
    record = logging.LogRecord("bundle_searcher", level, __file__, 1, msg, (), exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_outcome_is_appended_as_json():
    formatted = SearcherLogFormatter().format(
        _record(logging.INFO, "outcome", outcome={"borrower": "0xabc", "state": "gated_out", "block_number": 1})
    )
    assert formatted.endswith('| {"block_number": 1, "borrower": "0xabc", "state": "gated_out"}')


def test_traceback_only_for_errors():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        exc_info = sys.exc_info()

    formatter = SearcherLogFormatter()
    assert "Traceback" in formatter.format(_record(logging.ERROR, "failed", exc_info))
    assert "Traceback" not in formatter.format(_record(logging.WARNING, "failed", exc_info))
