"""Veeam Backup & Replication REST API client."""

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Optional, Tuple

import aiohttp

from ..config.settings import VeeamConfig
from ..exceptions import DecodeError, VeeamConnectionError
from ..models import (
    BackupObject,
    BackupSession,
    ManagedServer,
    Proxy,
    Repository,
    RepositoryState,
    ServerInfo,
    decode_collection,
)

logger = logging.getLogger(__name__)

# Refresh the access token this long before the server expires it
TOKEN_REFRESH_MARGIN_SECONDS = 60


class VeeamRESTClient:
    """Async client for the Veeam B&R REST API (password grant, bearer token)."""

    def __init__(self, config: VeeamConfig):
        self.config = config
        self.base_url = config.host.rstrip('/')
        self.session: Optional[aiohttp.ClientSession] = None
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0

        self.endpoints = {
            'token': '/api/oauth2/token',
            'serverInfo': '/api/v1/serverInfo',
            'sessions': '/api/v1/sessions',
            'managedServers': '/api/v1/backupInfrastructure/managedServers',
            'repositories': '/api/v1/backupInfrastructure/repositories',
            'repositoryStates': '/api/v1/backupInfrastructure/repositories/states',
            'proxies': '/api/v1/backupInfrastructure/proxies',
            'backupObjects': '/api/v1/backupObjects',
        }

    async def __aenter__(self):
        """Async context manager entry."""
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def open(self):
        """Create the HTTP session; no request is sent yet."""
        if self.session is not None:
            return
        connector = aiohttp.TCPConnector(ssl=False) if self.config.trust_self_signed_cert else aiohttp.TCPConnector()
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds),
            connector=connector,
        )

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    def _headers(self) -> Dict[str, str]:
        headers = {
            'x-api-version': self.config.x_api_version,
            'Accept': 'application/json',
        }
        if self._access_token:
            headers['Authorization'] = f"Bearer {self._access_token}"
        return headers

    async def authenticate(self) -> None:
        """Obtain a bearer token with the OAuth2 password grant."""
        if not self.session:
            raise RuntimeError("Client not initialized. Use async context manager.")

        url = f"{self.base_url}{self.endpoints['token']}"
        form = {
            'grant_type': 'password',
            'username': self.config.username,
            'password': self.config.password,
        }
        headers = {'x-api-version': self.config.x_api_version, 'Accept': 'application/json'}

        try:
            async with self.session.post(url, data=form, headers=headers) as response:
                body = await response.text()
                if response.status != 200:
                    logger.error(f"Error creating Veeam token: HTTP {response.status}: {body[:200]}")
                    raise VeeamConnectionError(
                        f"error creating Veeam token: HTTP {response.status}",
                        status=response.status,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise VeeamConnectionError(f"could not reach Veeam server at {self.base_url}: {e}") from e

        try:
            token = json.loads(body)
            access_token = token['access_token']
            expires_in = float(token.get('expires_in') or 0)
        except (ValueError, KeyError, TypeError) as e:
            raise DecodeError(f"could not parse Veeam token response: {e}") from e

        self._access_token = access_token
        loop = asyncio.get_running_loop()
        self._token_expires_at = loop.time() + expires_in if expires_in > 0 else float('inf')
        logger.info(f"Authenticated to Veeam server {self.base_url}")

    async def _ensure_token(self) -> None:
        loop = asyncio.get_running_loop()
        if self._access_token is None or loop.time() >= self._token_expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
            await self.authenticate()

    async def _make_request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET an endpoint and return the decoded JSON body."""
        if not self.session:
            raise RuntimeError("Client not initialized. Use async context manager.")

        await self._ensure_token()
        url = f"{self.base_url}{endpoint}"

        try:
            async with self.session.get(url, params=params, headers=self._headers()) as response:
                body = await response.text()
                if not 200 <= response.status < 300:
                    raise VeeamConnectionError(
                        f"GET {endpoint} failed: HTTP {response.status}: {body[:200]}",
                        status=response.status,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise VeeamConnectionError(f"GET {endpoint} failed: {e}") from e

        try:
            return json.loads(body)
        except ValueError as e:
            raise DecodeError(f"GET {endpoint} returned invalid JSON: {e}") from e

    async def ping(self) -> ServerInfo:
        """Check the server answers and return its identity."""
        data = await self._make_request(self.endpoints['serverInfo'])
        try:
            return ServerInfo.from_dict(data)
        except DecodeError as e:
            raise DecodeError(f"could not parse veeam server response: {e}") from e

    async def get_sessions(self) -> Tuple[BackupSession, ...]:
        data = await self._make_request(self.endpoints['sessions'])
        return decode_collection(data, BackupSession.from_dict, "sessions")

    async def get_managed_servers(self) -> Tuple[ManagedServer, ...]:
        data = await self._make_request(self.endpoints['managedServers'])
        return decode_collection(data, ManagedServer.from_dict, "managed servers")

    async def get_repositories(self) -> Tuple[Repository, ...]:
        data = await self._make_request(self.endpoints['repositories'])
        return decode_collection(data, Repository.from_dict, "repositories")

    async def get_repository_states(self, repository_id: str) -> Tuple[RepositoryState, ...]:
        """Capacity and usage for a single repository."""
        try:
            repo_uuid = uuid.UUID(repository_id)
        except (ValueError, AttributeError, TypeError) as e:
            raise DecodeError(f"could not parse repository id {repository_id!r}: {e}") from e

        data = await self._make_request(
            self.endpoints['repositoryStates'],
            params={'idFilter': str(repo_uuid)},
        )
        return decode_collection(data, RepositoryState.from_dict, "repository states")

    async def get_proxies(self) -> Tuple[Proxy, ...]:
        data = await self._make_request(self.endpoints['proxies'])
        return decode_collection(data, Proxy.from_dict, "proxies")

    async def get_backup_objects(self) -> Tuple[BackupObject, ...]:
        data = await self._make_request(self.endpoints['backupObjects'])
        return decode_collection(data, BackupObject.from_dict, "backup objects")
