"""Bitcoin Core client over JSON-RPC or the REST interface."""

import time
from decimal import Decimal
from typing import Any, Dict, List, Optional
import requests
import structlog

from btc_exposure.models.config import IndexerConfig
from btc_exposure.core.exceptions import (
    BitcoinRPCError, ConfigurationError, NodeUnavailableError,
)

logger = structlog.get_logger(__name__)

TRANSPORTS = ("rpc", "rest")


def normalize_base_url(url: str) -> str:
    """Add a scheme when missing and strip trailing slashes."""
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        url = f"http://{url}"
    return url.rstrip("/")


class BitcoinNodeClient:
    """Read-only block access to a Bitcoin Core node.

    JSON is decoded with Decimal floats so BTC amounts convert to satoshis
    without rounding. Connection failures raise NodeUnavailableError; the
    caller decides how to retry.
    """

    def __init__(self, config: IndexerConfig):
        self.config = config
        self.transport = config.bitcoin_transport.lower()
        if self.transport not in TRANSPORTS:
            raise ConfigurationError(
                f"Unknown bitcoin_transport {config.bitcoin_transport!r}, expected one of {TRANSPORTS}"
            )

        self.session = requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': 'btc-exposure/1.0.0'
        })

        self.rpc_url = normalize_base_url(config.bitcoin_rpc_url)
        self.rest_url = normalize_base_url(config.bitcoin_rest_url)
        self.auth = (config.bitcoin_rpc_user, config.bitcoin_rpc_password)
        self.logger = logger.bind(component="node_client", transport=self.transport)

        self.logger.info("Bitcoin node client initialized",
                         url=self.rpc_url if self.transport == "rpc" else self.rest_url)

    def _rpc(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Make one JSON-RPC call."""
        payload = {
            "jsonrpc": "1.0",
            "id": int(time.time() * 1000),
            "method": method,
            "params": params or []
        }

        try:
            response = self.session.post(
                self.rpc_url,
                json=payload,
                auth=self.auth,
                timeout=self.config.bitcoin_rpc_timeout
            )
        except requests.RequestException as e:
            raise NodeUnavailableError(f"RPC {method} failed: {e}") from e

        if response.status_code in (401, 403):
            raise ConfigurationError("RPC authentication rejected by node")

        # Bitcoin Core reports RPC errors with HTTP 500 and a JSON body
        try:
            data = response.json(parse_float=Decimal)
        except ValueError as e:
            if not response.ok:
                raise NodeUnavailableError(
                    f"RPC {method} failed with HTTP {response.status_code}"
                ) from e
            raise NodeUnavailableError(f"RPC {method} returned invalid JSON: {e}") from e

        error = data.get('error')
        if error is not None:
            raise BitcoinRPCError(
                f"RPC Error {error.get('code', -1)}: {error.get('message', 'Unknown RPC error')}",
                code=error.get('code'),
            )
        if not response.ok:
            raise NodeUnavailableError(f"RPC {method} failed with HTTP {response.status_code}")

        return data.get('result')

    def _rest_get(self, path: str) -> Any:
        """GET a REST .json resource."""
        url = f"{self.rest_url}{path}"
        try:
            response = self.session.get(url, timeout=self.config.bitcoin_rpc_timeout)
        except requests.RequestException as e:
            raise NodeUnavailableError(f"GET {path} failed: {e}") from e

        if response.status_code in (400, 404):
            raise BitcoinRPCError(
                f"GET {path} returned {response.status_code}: {response.text.strip()}",
                code=response.status_code,
            )
        if not response.ok:
            raise NodeUnavailableError(f"GET {path} failed with HTTP {response.status_code}")

        try:
            return response.json(parse_float=Decimal)
        except ValueError as e:
            raise NodeUnavailableError(f"GET {path} returned invalid JSON: {e}") from e

    def get_blockchain_info(self) -> Dict[str, Any]:
        """Get blockchain information."""
        if self.transport == "rest":
            return self._rest_get("/rest/chaininfo.json")
        return self._rpc("getblockchaininfo")

    def get_block_count(self) -> int:
        """Get the current block height."""
        if self.transport == "rest":
            return int(self.get_blockchain_info()['blocks'])
        return int(self._rpc("getblockcount"))

    def get_block_hash(self, height: int) -> str:
        """Get block hash by height."""
        if self.transport == "rest":
            return self._rest_get(f"/rest/blockhashbyheight/{height}.json")['blockhash']
        return self._rpc("getblockhash", [height])

    def get_block(self, block_hash: str, verbosity: Optional[int] = None) -> Dict[str, Any]:
        """
        Get block data by hash.

        Args:
            block_hash: Block hash
            verbosity: 2=json with tx details, 3=also with prevouts (RPC only)
        """
        if self.transport == "rest":
            return self._rest_get(f"/rest/block/{block_hash}.json")
        if verbosity is None:
            verbosity = self.config.block_verbosity
        return self._rpc("getblock", [block_hash, verbosity])

    def get_block_by_height(self, height: int) -> Dict[str, Any]:
        return self.get_block(self.get_block_hash(height))

    def test_connection(self) -> bool:
        """Test node connection."""
        try:
            info = self.get_blockchain_info()
            self.logger.info("Node connection successful",
                             chain=info.get('chain'),
                             blocks=info.get('blocks'))
            return True
        except (NodeUnavailableError, BitcoinRPCError) as e:
            self.logger.error("Node connection failed", error=str(e))
            return False

    def close(self):
        """Close the HTTP session."""
        self.session.close()
        self.logger.info("Node client session closed")
