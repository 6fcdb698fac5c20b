"""
Terra API Clients

Minimal clients for fetching transactions from a Terra node, either through
the LCD REST gateway (cosmos tx service) or the Tendermint RPC.
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)


class _TerraHTTPClient:
    """Shared session handling for the LCD and RPC clients."""

    def __init__(
        self,
        base_url: str,
        timeout: int = 30,
        max_retries: int = 3
    ):
        """
        Initialize the client.

        Args:
            base_url: Base URL of the node endpoint
            timeout: Request timeout in seconds (default: 30)
            max_retries: Maximum number of retry attempts (default: 3)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

        # Configure session with retry strategy
        self.session = requests.Session()
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET", "OPTIONS"]
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)
        self.session.headers.update({'Accept': 'application/json'})

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None
    ) -> Dict[str, Any]:
        """
        Make a request to the node.

        Args:
            method: HTTP method
            endpoint: API endpoint (without base URL)
            params: URL parameters

        Returns:
            Response data as dictionary

        Raises:
            requests.exceptions.RequestException: For request failures
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                timeout=self.timeout
            )
            response.raise_for_status()

            if response.status_code == 204 or not response.content:
                return {}

            result = response.json()
            if not isinstance(result, dict):
                return {}
            return result

        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else 'unknown'
            logger.error(f"HTTP error {status} from {url}: {e}")
            raise
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error for {url}: {e}")
            raise

    def close(self):
        """Close the session."""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class TerraLCDClient(_TerraHTTPClient):
    """Client for the LCD REST gateway (``/cosmos/tx/v1beta1``)."""

    def get_txs_by_height(self, height: int, limit: int = 100) -> List[Dict[str, Any]]:
        """
        Get all transaction responses included in a block.

        Args:
            height: Block height
            limit: Page size

        Returns:
            List of tx_response dicts (empty when the block has none)
        """
        params = {
            'query': f'tx.height={height}',
            'pagination.limit': limit,
        }
        response = self._make_request('GET', '/cosmos/tx/v1beta1/txs', params=params)
        return response.get('tx_responses') or []

    def get_tx(self, tx_hash: str) -> Dict[str, Any]:
        """Get one transaction by hash (``{tx, tx_response}``)."""
        return self._make_request('GET', f'/cosmos/tx/v1beta1/txs/{tx_hash}')

    def get_latest_block(self) -> Dict[str, Any]:
        return self._make_request('GET', '/cosmos/base/tendermint/v1beta1/blocks/latest')

    def health_check(self) -> bool:
        """Check if the LCD is accessible."""
        try:
            self.get_latest_block()
            return True
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False


class TerraRPCClient(_TerraHTTPClient):
    """Client for the Tendermint RPC (``/status``, ``/tx_search``, ``/block``)."""

    def get_status(self) -> Dict[str, Any]:
        return self._make_request('GET', '/status')

    def get_latest_height(self) -> int:
        """Latest block height reported by the node."""
        status = self.get_status()
        return int(status['result']['sync_info']['latest_block_height'])

    def tx_search_height(self, height: int, per_page: int = 100) -> List[Dict[str, Any]]:
        """
        Search the transactions of one exact block height.

        Returns:
            List of tx_search items (``{hash, height, tx_result, tx}``)
        """
        params = {
            'query': f'"tx.height={height}"',
            'per_page': per_page,
        }
        response = self._make_request('GET', '/tx_search', params=params)
        return (response.get('result') or {}).get('txs') or []

    def get_block_time(self, height: int) -> Optional[str]:
        """Block header time of ``height`` (ISO-8601), or None if missing."""
        response = self._make_request('GET', '/block', params={'height': height})
        header = ((response.get('result') or {}).get('block') or {}).get('header') or {}
        return header.get('time')

    def health_check(self) -> bool:
        """Check if the RPC is accessible."""
        try:
            self.get_status()
            return True
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False
