"""
RelayClient - signed JSON-RPC exchange with the bundle relay.

Every request body is serialized once; the auth signer signs exactly those
bytes and exactly those bytes are posted. The relay verifies the
signature against the raw body, so nothing may re-serialize in between.
"""

import itertools
import json
import threading
from typing import Any, Dict, Optional

import requests

from app.searcher.exceptions import RelayError, TransportError
from app.searcher.logging_config import setup_logger
from app.searcher.models import Bundle, InclusionStatus, SimulationResult, SubmissionReceipt
from app.searcher.signer import Signer

logger = setup_logger()

SIGNATURE_HEADER = "X-Relay-Signature"


def encode_request_body(payload: Dict[str, Any]) -> bytes:
    """Canonical JSON bytes for a request payload."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _to_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, int):
        return value
    text = str(value)
    if text.startswith(("0x", "-0x")):
        return int(text, 16)
    return int(text)


class RelayClient:
    def __init__(self, relay_url: str, signer: Signer, timeout: float = 10, session: Optional[requests.Session] = None):
        self.relay_url = relay_url
        self.signer = signer
        self.timeout = timeout
        self.session = session or requests.Session()
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def _post(self, method: str, params: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        """
        Sign and send one JSON-RPC call, returning its "result".

        Raises:
            TransportError: connection failure, timeout, or a 5xx without a JSON body.
            RelayError: the relay answered with an error object or a malformed payload.
        """
        payload = {"jsonrpc": "2.0", "id": self._next_id(), "method": method, "params": [params]}
        body = encode_request_body(payload)
        signature = self.signer.sign_message(body)
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: f"{self.signer.address}:{signature}",
        }

        try:
            response = self.session.post(
                self.relay_url, data=body, headers=headers, timeout=timeout if timeout is not None else self.timeout
            )
        except requests.RequestException as ex:
            raise TransportError(f"{method}: relay unreachable: {ex}") from ex

        try:
            reply = response.json()
        except ValueError:
            if response.status_code >= 500:
                raise TransportError(f"{method}: relay returned HTTP {response.status_code}") from None
            raise RelayError(f"{method}: malformed relay response (HTTP {response.status_code})") from None

        if not isinstance(reply, dict):
            raise RelayError(f"{method}: malformed relay response")

        error = reply.get("error")
        if error:
            if isinstance(error, dict):
                raise RelayError(str(error.get("message", error)), code=error.get("code"))
            raise RelayError(str(error))

        if response.status_code >= 400:
            raise RelayError(f"{method}: relay returned HTTP {response.status_code}", code=response.status_code)

        if "result" not in reply:
            raise RelayError(f"{method}: relay response has no result")

        return reply["result"]

    def send_bundle(self, bundle: Bundle) -> SubmissionReceipt:
        params = {"txs": list(bundle.transactions), "blockNumber": hex(bundle.target_block)}
        if bundle.min_timestamp is not None:
            params["minTimestamp"] = bundle.min_timestamp
        if bundle.max_timestamp is not None:
            params["maxTimestamp"] = bundle.max_timestamp

        result = self._post("eth_sendBundle", params)
        bundle_hash = result.get("bundleHash", "") if isinstance(result, dict) else ""
        if not bundle_hash:
            logger.warning("RelayClient: eth_sendBundle for block %s returned no bundle hash", bundle.target_block)
            return SubmissionReceipt(bundle_hash="", accepted=False)

        logger.info("RelayClient: Bundle %s accepted for block %s", bundle_hash, bundle.target_block)
        return SubmissionReceipt(bundle_hash=bundle_hash, accepted=True)

    def simulate_bundle(self, bundle: Bundle, state_block_number: str = "latest") -> SimulationResult:
        params = {
            "txs": list(bundle.transactions),
            "blockNumber": hex(bundle.target_block),
            "stateBlockNumber": state_block_number,
        }
        result = self._post("eth_callBundle", params)
        if not isinstance(result, dict):
            raise RelayError("eth_callBundle: malformed simulation result")

        try:
            gas_used = _to_int(result.get("totalGasUsed"))
            for tx_result in result.get("results") or []:
                reason = tx_result.get("error") or tx_result.get("revert")
                if reason:
                    return SimulationResult(success=False, gas_used=gas_used, profit=0, failure_reason=str(reason))
            profit = _to_int(result.get("coinbaseDiff"))
        except (AttributeError, TypeError, ValueError) as ex:
            raise RelayError("eth_callBundle: malformed simulation result") from ex

        return SimulationResult(success=True, gas_used=gas_used, profit=profit)

    def get_bundle_stats(self, bundle_hash: str, target_block: int, timeout: Optional[float] = None) -> InclusionStatus:
        result = self._post(
            "flashbots_getBundleStats", {"bundleHash": bundle_hash, "blockNumber": hex(target_block)}, timeout=timeout
        )
        included = isinstance(result, dict) and result.get("isSimulated") is True
        return InclusionStatus(
            bundle_hash=bundle_hash,
            target_block=target_block,
            included=included,
            # A bundle is only valid for its target block.
            included_at_block=target_block if included else None,
        )
