"""Module for handling API routes"""

from flask import Blueprint, jsonify, make_response, request

from .bot_manager import SearcherManager
from .config_loader import load_searcher_config
from .logging_config import setup_logger

logger = setup_logger()

searcher = Blueprint("searcher", __name__)


def start_searcher(chain_id=1):
    """Start the searcher for the given chain, defaults to mainnet"""
    config = load_searcher_config(chain_id)
    manager = SearcherManager(config, notify=True)

    # Store on module level for route access before app context is available
    start_searcher._manager = manager

    manager.start()

    return manager


def _get_manager():
    """Get the searcher manager instance."""
    return getattr(start_searcher, "_manager", None)


@searcher.route("/status", methods=["GET"])
def get_status():
    manager = _get_manager()
    if not manager:
        return jsonify({"error": "Searcher not initialized"}), 500

    return make_response(jsonify(manager.orchestrator.status()))


@searcher.route("/outcomes", methods=["GET"])
def get_outcomes():
    manager = _get_manager()
    if not manager:
        return jsonify({"error": "Searcher not initialized"}), 500

    limit = request.args.get("limit", 100, type=int)
    logger.info("API: Getting %s recent outcomes", limit)
    outcomes = manager.orchestrator.get_recent_outcomes(limit)

    return make_response(jsonify([outcome.to_dict() for outcome in outcomes]))
