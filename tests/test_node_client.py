"""Unit tests for the Bitcoin Core client."""

import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests

from btc_exposure.core.exceptions import BitcoinRPCError, ConfigurationError, NodeUnavailableError
from btc_exposure.core.node_client import BitcoinNodeClient, normalize_base_url
from btc_exposure.models.config import IndexerConfig


def make_response(status_code=200, body=None, text=None):
    """Real requests Response so json(parse_float=...) behaves as in production."""
    response = requests.models.Response()
    response.status_code = status_code
    if body is not None:
        response._content = json.dumps(body).encode()
    else:
        response._content = (text or "").encode()
    return response


@pytest.fixture
def rpc_client():
    config = IndexerConfig(bitcoin_rpc_user="user", bitcoin_rpc_password="pass")
    client = BitcoinNodeClient(config)
    client.session = MagicMock()
    return client


@pytest.fixture
def rest_client():
    config = IndexerConfig(bitcoin_transport="rest", bitcoin_rest_url="127.0.0.1:8332/")
    client = BitcoinNodeClient(config)
    client.session = MagicMock()
    return client


class TestNormalizeBaseUrl:
    """Tests for base URL normalization."""

    def test_adds_scheme(self):
        assert normalize_base_url("127.0.0.1:8332") == "http://127.0.0.1:8332"

    def test_keeps_https_and_strips_slashes(self):
        assert normalize_base_url(" https://node.example/ ") == "https://node.example"


class TestRPCTransport:
    """Tests for JSON-RPC requests."""

    def test_invalid_transport(self):
        with pytest.raises(ConfigurationError):
            BitcoinNodeClient(IndexerConfig(bitcoin_transport="zmq"))

    def test_block_count(self, rpc_client):
        rpc_client.session.post.return_value = make_response(body={"result": 840000, "error": None})

        assert rpc_client.get_block_count() == 840000

        args, kwargs = rpc_client.session.post.call_args
        assert args[0] == "http://localhost:8332"
        assert kwargs['json']['method'] == "getblockcount"
        assert kwargs['auth'] == ("user", "pass")

    def test_get_block_uses_configured_verbosity(self, rpc_client):
        rpc_client.session.post.return_value = make_response(body={"result": {}, "error": None})

        rpc_client.get_block("ab" * 32)

        assert rpc_client.session.post.call_args[1]['json']['params'] == ["ab" * 32, 3]

    def test_amounts_decode_as_decimal(self, rpc_client):
        response = make_response()
        response._content = b'{"result": {"value": 0.1}, "error": null}'
        rpc_client.session.post.return_value = response

        result = rpc_client._rpc("getblock")

        assert result['value'] == Decimal("0.1")
        assert isinstance(result['value'], Decimal)

    def test_rpc_error_carries_code(self, rpc_client):
        rpc_client.session.post.return_value = make_response(
            status_code=500,
            body={"result": None, "error": {"code": -8, "message": "Block height out of range"}},
        )

        with pytest.raises(BitcoinRPCError) as exc_info:
            rpc_client.get_block_hash(10**7)
        assert exc_info.value.code == -8

    def test_connection_error_is_unavailable(self, rpc_client):
        rpc_client.session.post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(NodeUnavailableError):
            rpc_client.get_block_count()

    def test_authentication_failure_is_configuration_error(self, rpc_client):
        rpc_client.session.post.return_value = make_response(status_code=401, text="")

        with pytest.raises(ConfigurationError):
            rpc_client.get_block_count()

    def test_server_error_without_json(self, rpc_client):
        rpc_client.session.post.return_value = make_response(status_code=503, text="Loading block index")

        with pytest.raises(NodeUnavailableError):
            rpc_client.get_block_count()

    def test_connection_check(self, rpc_client):
        rpc_client.session.post.return_value = make_response(
            body={"result": {"chain": "main", "blocks": 1}, "error": None}
        )
        assert rpc_client.test_connection() is True

        rpc_client.session.post.side_effect = requests.Timeout("slow")
        assert rpc_client.test_connection() is False


class TestRESTTransport:
    """Tests for the REST interface."""

    def test_block_by_height(self, rest_client):
        rest_client.session.get.side_effect = [
            make_response(body={"blockhash": "cd" * 32}),
            make_response(body={"hash": "cd" * 32, "height": 5}),
        ]

        block = rest_client.get_block_by_height(5)

        assert block['height'] == 5
        urls = [c.args[0] for c in rest_client.session.get.call_args_list]
        assert urls == [
            "http://127.0.0.1:8332/rest/blockhashbyheight/5.json",
            f"http://127.0.0.1:8332/rest/block/{'cd' * 32}.json",
        ]

    def test_block_count_from_chaininfo(self, rest_client):
        rest_client.session.get.return_value = make_response(body={"chain": "main", "blocks": 12})
        assert rest_client.get_block_count() == 12

    def test_not_found(self, rest_client):
        rest_client.session.get.return_value = make_response(status_code=404, text="Block height out of range\n")

        with pytest.raises(BitcoinRPCError) as exc_info:
            rest_client.get_block_hash(10**7)
        assert exc_info.value.code == 404

    def test_server_error(self, rest_client):
        rest_client.session.get.return_value = make_response(status_code=503, text="")

        with pytest.raises(NodeUnavailableError):
            rest_client.get_blockchain_info()

    def test_close(self, rest_client):
        rest_client.close()
        rest_client.session.close.assert_called_once()


def test_session_headers():
    with patch("btc_exposure.core.node_client.requests.Session") as session_cls:
        BitcoinNodeClient(IndexerConfig())
    session_cls.return_value.headers.update.assert_called_once()
