"""Fetches one cycle's worth of records from the Veeam server."""

import logging
from typing import Tuple

from .clients.veeam_rest import VeeamRESTClient
from .models import (
    BackupObject,
    BackupSession,
    CycleSnapshot,
    ManagedServer,
    Proxy,
    Repository,
    RepositoryState,
    ServerInfo,
)


logger = logging.getLogger(__name__)


class VeeamCollector:
    """Retrieves Veeam collections; holds no state between calls."""

    def __init__(self, client: VeeamRESTClient):
        self.client = client

    async def probe(self) -> ServerInfo:
        logger.info("Collecting veeam server info")
        info = await self.client.ping()
        logger.info(f"Veeam server information: name={info.name}, buildVersion={info.build_version}")
        return info

    async def get_sessions(self) -> Tuple[BackupSession, ...]:
        logger.info("Collecting sessions information")
        return await self.client.get_sessions()

    async def get_managed_servers(self) -> Tuple[ManagedServer, ...]:
        logger.info("Collecting managed servers information")
        return await self.client.get_managed_servers()

    async def get_repositories(self) -> Tuple[Tuple[Repository, ...], Tuple[RepositoryState, ...]]:
        """Repository configuration plus one capacity lookup per repository.

        Lookups run one after another; the first failure aborts the call.
        """
        logger.info("Collecting repositories information")
        repositories = await self.client.get_repositories()

        states = []
        for repository in repositories:
            logger.debug(f"Collecting repository state for {repository.name} ({repository.id})")
            states.extend(await self.client.get_repository_states(repository.id))

        return repositories, tuple(states)

    async def get_proxies(self) -> Tuple[Proxy, ...]:
        logger.info("Collecting proxies information")
        return await self.client.get_proxies()

    async def get_backup_objects(self) -> Tuple[BackupObject, ...]:
        logger.info("Collecting backup objects information")
        return await self.client.get_backup_objects()

    async def collect_cycle(self) -> CycleSnapshot:
        """Fetch all five collections in order; any error propagates unchanged."""
        sessions = await self.get_sessions()
        managed_servers = await self.get_managed_servers()
        repositories, repository_states = await self.get_repositories()
        proxies = await self.get_proxies()
        backup_objects = await self.get_backup_objects()

        snapshot = CycleSnapshot(
            sessions=sessions,
            managed_servers=managed_servers,
            repositories=repositories,
            repository_states=repository_states,
            proxies=proxies,
            backup_objects=backup_objects,
        )
        logger.debug(f"Fetched collections: {snapshot.counts()}")
        return snapshot
