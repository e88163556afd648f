"""
Sync Transport.

Sends the mutation log as one batch and returns the server's verdict.
Anything that is not a well-formed sync response becomes a
TransportError; the caller then keeps its log intact.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from .exceptions import TransportError

logger = logging.getLogger(__name__)

SYNC_PATH = '/api/v1/sync/'
SNAPSHOT_PATH = '/api/v1/clinical/snapshot/'


@dataclass
class SyncResponse:
    """Parsed body of a sync response."""
    success: bool
    results: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    code: Optional[str] = None
    status_code: Optional[int] = None


class SyncTransport:
    """
    Thin ``requests.Session`` wrapper for the sync endpoints.

    Every request carries the bearer token and the device id.
    """

    def __init__(self, server_url: str, token: Optional[str] = None, device_id: Optional[str] = None,
                 timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.server_url = server_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({'Accept': 'application/json'})
        if device_id:
            self.session.headers['X-Device-ID'] = device_id
        if token:
            self.set_token(token)

    def set_token(self, token: str) -> None:
        self.session.headers['Authorization'] = f'Bearer {token}'

    def submit(self, changes: List[Dict[str, Any]]) -> SyncResponse:
        """
        POST one batch.

        Returns a SyncResponse for any response carrying a sync body,
        including ``success: false`` rejections (400/409).

        Raises:
            TransportError: network failure, timeout, or an unexpected response
        """
        url = f'{self.server_url}{SYNC_PATH}'
        logger.debug(f'Posting {len(changes)} changes to {url}')
        response = self._send('post', url, json={'changes': changes})
        body = self._json_body(response)

        if isinstance(body, dict) and isinstance(body.get('success'), bool):
            if body['success'] and response.ok:
                return SyncResponse(
                    success=True,
                    results=list(body.get('results') or []),
                    status_code=response.status_code,
                )
            if not body['success']:
                return SyncResponse(
                    success=False,
                    error=body.get('error') or 'Sync failed',
                    code=body.get('code'),
                    status_code=response.status_code,
                )

        raise TransportError(
            f'Unexpected sync response: HTTP {response.status_code}',
            status_code=response.status_code,
        )

    def fetch_snapshot(self) -> Dict[str, Any]:
        """GET every record the authenticated user owns."""
        url = f'{self.server_url}{SNAPSHOT_PATH}'
        response = self._send('get', url)
        if not response.ok:
            raise TransportError(
                f'Snapshot request failed: HTTP {response.status_code}',
                status_code=response.status_code,
            )
        body = self._json_body(response)
        if not isinstance(body, dict):
            raise TransportError('Snapshot response is not a JSON object', status_code=response.status_code)
        return body

    def _send(self, method, url, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            logger.warning(f'Sync request timed out after {self.timeout}s')
            raise TransportError(f'Request timed out after {self.timeout}s') from e
        except requests.exceptions.RequestException as e:
            logger.warning(f'Network error during sync: {e}')
            raise TransportError(f'Network error: {e.__class__.__name__}') from e

    @staticmethod
    def _json_body(response):
        try:
            return response.json()
        except ValueError:
            return None
