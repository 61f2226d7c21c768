"""
Tests for the relay wire protocol: request shape, body signing and error mapping.
"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from app.searcher.exceptions import RelayError, TransportError
from app.searcher.models import Bundle
from app.searcher.relay_client import SIGNATURE_HEADER, RelayClient, encode_request_body
from app.searcher.signer import recover_message_signer

RELAY_URL = "https://relay.example"
TARGET_BLOCK = 19_000_001


def _response(payload=None, status_code=200, json_error=False):
    response = MagicMock()
    response.status_code = status_code
    if json_error:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture()
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture()
def client(auth_signer, session):
    return RelayClient(RELAY_URL, auth_signer, timeout=5, session=session)


@pytest.fixture()
def bundle():
    return Bundle(transactions=("0x02aa", "0x02bb"), target_block=TARGET_BLOCK)


def _sent(session):
    kwargs = session.post.call_args.kwargs
    return kwargs["data"], kwargs["headers"], kwargs


def test_send_bundle_request_shape(client, session, bundle):
    session.post.return_value = _response({"jsonrpc": "2.0", "id": 1, "result": {"bundleHash": "0xabc"}})

    receipt = client.send_bundle(bundle)

    assert receipt.accepted
    assert receipt.bundle_hash == "0xabc"
    body, headers, kwargs = _sent(session)
    assert session.post.call_args.args[0] == RELAY_URL
    assert kwargs["timeout"] == 5
    payload = json.loads(body)
    assert payload["method"] == "eth_sendBundle"
    assert payload["jsonrpc"] == "2.0"
    assert payload["params"] == [{"txs": ["0x02aa", "0x02bb"], "blockNumber": hex(TARGET_BLOCK)}]
    assert headers["Content-Type"] == "application/json"


def test_signature_covers_exact_body_bytes(client, session, bundle, auth_signer):
    session.post.return_value = _response({"result": {"bundleHash": "0xabc"}})

    client.send_bundle(bundle)

    body, headers, _ = _sent(session)
    assert isinstance(body, bytes)
    address, signature = headers[SIGNATURE_HEADER].split(":")
    assert address == auth_signer.address
    assert recover_message_signer(body, signature) == auth_signer.address
    assert body == encode_request_body(json.loads(body))


def test_signing_same_body_twice_verifies(auth_signer):
    body = encode_request_body({"jsonrpc": "2.0", "id": 1, "method": "eth_sendBundle", "params": []})
    first = auth_signer.sign_message(body)
    second = auth_signer.sign_message(body)
    assert recover_message_signer(body, first) == auth_signer.address
    assert recover_message_signer(body, second) == auth_signer.address


def test_request_ids_increase(client, session, bundle):
    session.post.return_value = _response({"result": {"bundleHash": "0xabc"}})
    client.send_bundle(bundle)
    first_id = json.loads(_sent(session)[0])["id"]
    client.send_bundle(bundle)
    second_id = json.loads(_sent(session)[0])["id"]
    assert second_id == first_id + 1


def test_send_bundle_timestamps_optional(client, session):
    session.post.return_value = _response({"result": {"bundleHash": "0xabc"}})
    client.send_bundle(Bundle(transactions=("0x02aa",), target_block=TARGET_BLOCK, min_timestamp=10, max_timestamp=20))
    params = json.loads(_sent(session)[0])["params"][0]
    assert params["minTimestamp"] == 10
    assert params["maxTimestamp"] == 20


def test_send_bundle_without_hash_is_not_accepted(client, session, bundle):
    session.post.return_value = _response({"result": {}})
    receipt = client.send_bundle(bundle)
    assert not receipt.accepted
    assert receipt.bundle_hash == ""


def test_relay_error_object_maps_to_relay_error(client, session, bundle):
    session.post.return_value = _response(
        {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "bundle too old"}}, status_code=400
    )
    with pytest.raises(RelayError) as excinfo:
        client.send_bundle(bundle)
    assert excinfo.value.message == "bundle too old"
    assert excinfo.value.code == -32000


def test_malformed_response_is_relay_error(client, session, bundle):
    session.post.return_value = _response(json_error=True, status_code=200)
    with pytest.raises(RelayError):
        client.send_bundle(bundle)


def test_connection_failure_is_transport_error(client, session, bundle):
    session.post.side_effect = requests.ConnectionError("refused")
    with pytest.raises(TransportError):
        client.send_bundle(bundle)


def test_timeout_is_transport_error(client, session, bundle):
    session.post.side_effect = requests.Timeout("slow")
    with pytest.raises(TransportError):
        client.simulate_bundle(bundle)


def test_server_error_without_json_is_transport_error(client, session, bundle):
    session.post.return_value = _response(json_error=True, status_code=502)
    with pytest.raises(TransportError):
        client.send_bundle(bundle)


def test_transport_and_relay_errors_are_distinct():
    assert not issubclass(TransportError, RelayError)
    assert not issubclass(RelayError, TransportError)


def test_simulate_bundle_success(client, session, bundle):
    session.post.return_value = _response(
        {
            "result": {
                "coinbaseDiff": "20000000000000000",
                "totalGasUsed": 350000,
                "results": [{"txHash": "0x1", "gasUsed": 350000}],
            }
        }
    )

    result = client.simulate_bundle(bundle)

    assert result.success
    assert result.profit == 2 * 10**16
    assert result.gas_used == 350000
    assert result.failure_reason is None
    params = json.loads(_sent(session)[0])["params"][0]
    assert params == {"txs": ["0x02aa", "0x02bb"], "blockNumber": hex(TARGET_BLOCK), "stateBlockNumber": "latest"}
    assert json.loads(_sent(session)[0])["method"] == "eth_callBundle"


def test_simulate_bundle_reverted_tx(client, session, bundle):
    session.post.return_value = _response(
        {"result": {"coinbaseDiff": "0", "totalGasUsed": "0x5208", "results": [{"error": "execution reverted"}]}}
    )

    result = client.simulate_bundle(bundle)

    assert not result.success
    assert result.failure_reason == "execution reverted"
    assert result.gas_used == 21000


def test_simulate_bundle_hex_and_negative_profit(client, session, bundle):
    session.post.return_value = _response({"result": {"coinbaseDiff": "-0x10", "totalGasUsed": "0"}})
    result = client.simulate_bundle(bundle)
    assert result.success
    assert result.profit == -16


def test_bundle_stats_included(client, session):
    session.post.return_value = _response({"result": {"isSimulated": True, "simulatedAt": "2024-01-01T00:00:00Z"}})

    status = client.get_bundle_stats("0xabc", TARGET_BLOCK, timeout=15)

    assert status.included
    assert status.included_at_block == TARGET_BLOCK
    payload = json.loads(_sent(session)[0])
    assert payload["method"] == "flashbots_getBundleStats"
    assert payload["params"] == [{"bundleHash": "0xabc", "blockNumber": hex(TARGET_BLOCK)}]
    assert session.post.call_args.kwargs["timeout"] == 15


def test_bundle_stats_not_included(client, session):
    session.post.return_value = _response({"result": {"isSimulated": False}})
    status = client.get_bundle_stats("0xabc", TARGET_BLOCK)
    assert not status.included
    assert status.included_at_block is None


@pytest.mark.parametrize(
    "result",
    [
        {"coinbaseDiff": "lots", "totalGasUsed": 21000},
        {"coinbaseDiff": "0x10", "totalGasUsed": "0xzz"},
        {"coinbaseDiff": "0x10", "totalGasUsed": 21000, "results": ["execution reverted"]},
        {"coinbaseDiff": "0x10", "totalGasUsed": 21000, "results": 5},
    ],
)
def test_malformed_simulation_result_is_relay_error(client, session, bundle, result):
    session.post.return_value = _response({"result": result})
    with pytest.raises(RelayError, match="malformed simulation result"):
        client.simulate_bundle(bundle)
