"""
Creates and returns main flask app
"""

import os
import threading

from flask import Flask, jsonify
from flask_cors import CORS

from .searcher.routes import searcher, start_searcher


def create_app(start_searcher_thread: bool = True):
    """Create Flask app and start the searcher for the configured chain"""
    app = Flask(__name__)
    CORS(app)

    @app.route("/health", methods=["GET"])
    def health_check():
        return jsonify({"status": "healthy"}), 200

    if start_searcher_thread:
        chain_id = int(os.environ.get("CHAIN_ID", 1))
        searcher_thread = threading.Thread(target=start_searcher, args=(chain_id,), daemon=True)
        searcher_thread.start()

    app.register_blueprint(searcher, url_prefix="/searcher")

    return app
