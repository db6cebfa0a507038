"""Map Veeam records onto InfluxDB points.

Every function here is pure: records in, ``MetricPoint`` objects out. Records
that should not be stored (incomplete or excluded sessions, unmatched or
unsupported repositories) are skipped and logged at debug level; skipping is
never an error.
"""

import logging
from typing import AbstractSet, Dict, Iterable, List, Optional, Sequence

from .models import (
    BackupObject,
    BackupSession,
    ManagedServer,
    MetricPoint,
    Proxy,
    Repository,
    RepositoryState,
    ServerInfo,
    SessionResult,
)


logger = logging.getLogger(__name__)

HOST_TAG = "veeamVBR"

MEASUREMENT_INFO = "veeam_vbr_info"
MEASUREMENT_SESSIONS = "veeam_vbr_sessions"
MEASUREMENT_MANAGED_SERVERS = "veeam_vbr_managedservers"
MEASUREMENT_REPOSITORIES = "veeam_vbr_repositories"
MEASUREMENT_PROXIES = "veeam_vbr_proxies"
MEASUREMENT_BACKUP_OBJECTS = "veeam_vbr_backupobjects"

SUPPORTED_REPOSITORY_TYPES = frozenset(["WinLocal", "Nfs", "Smb"])

BYTES_PER_GB = 1024 ** 3

SKIP_INCOMPLETE = "incomplete_session"
SKIP_EXCLUDED = "excluded_job_type"
SKIP_NO_FIELDS = "no_fields"
SKIP_UNMATCHED = "unmatched_repository"
SKIP_UNKNOWN_TYPE = "unknown_repository_type"


class SkipCounter:
    """Tally of records dropped while mapping, keyed by reason."""

    def __init__(self):
        self.counts: Dict[str, int] = {}

    def add(self, reason: str) -> None:
        self.counts[reason] = self.counts.get(reason, 0) + 1


def map_server_info(info: ServerInfo, host: str) -> MetricPoint:
    return MetricPoint(
        measurement=MEASUREMENT_INFO,
        tags={
            "veeamVBRId": info.vbr_id,
            "veeamVBRName": info.name,
            "veeamVBRVersion": info.build_version,
            HOST_TAG: host,
            "veeamDatabaseVendor": info.database_vendor,
        },
        fields={"vbr": 1},
    )


def should_skip_session(
    session: BackupSession,
    excluded_job_types: AbstractSet[str],
) -> Optional[str]:
    """Return the skip reason for a session, or None when it is stored."""
    if session.result is SessionResult.NONE:
        return SKIP_INCOMPLETE
    if session.session_type in excluded_job_types:
        return SKIP_EXCLUDED
    return None


def map_session(session: BackupSession, host: str) -> MetricPoint:
    fields = {}
    result_code = session.result.numeric_value
    if result_code is not None:
        fields["veeamVBRSessionsJobResult"] = result_code
    duration = session.duration_seconds
    if duration is not None:
        fields["veeamBackupSessionsTimeDuration"] = duration

    return MetricPoint(
        measurement=MEASUREMENT_SESSIONS,
        tags={
            HOST_TAG: host,
            "veeamVBRSessionJobName": session.name,
            "veeamVBRSessiontype": session.session_type,
            "veeamVBRSessionsJobState": session.state,
            "veeamVBRSessionsJobResultMessage": session.result_message,
        },
        fields=fields,
        time=session.end_time,
    )


def map_sessions(
    sessions: Iterable[BackupSession],
    host: str,
    excluded_job_types: AbstractSet[str],
    skipped: Optional[SkipCounter] = None,
) -> List[MetricPoint]:
    skipped = skipped if skipped is not None else SkipCounter()
    points = []
    for session in sessions:
        reason = should_skip_session(session, excluded_job_types)
        if reason == SKIP_INCOMPLETE:
            logger.debug(f"Skipping session with no data: {session.name}")
            skipped.add(reason)
            continue
        if reason == SKIP_EXCLUDED:
            logger.debug(f"Skipping session with excluded job type: {session.name} ({session.session_type})")
            skipped.add(reason)
            continue

        point = map_session(session, host)
        if not point.fields:
            logger.debug(f"Skipping session without result or end time: {session.name}")
            skipped.add(SKIP_NO_FIELDS)
            continue
        points.append(point)
    return points


def map_managed_servers(servers: Sequence[ManagedServer], host: str) -> List[MetricPoint]:
    return [
        MetricPoint(
            measurement=MEASUREMENT_MANAGED_SERVERS,
            tags={
                HOST_TAG: host,
                "veeamVBRMSName": server.name,
                "veeamVBRMStype": server.type,
                "veeamVBRMSDescription": server.description,
            },
            # Position in this cycle's listing, not a stable identity
            fields={"veeamVBRMSInternalID": index},
        )
        for index, server in enumerate(servers)
    ]


def gb_to_bytes(value: float) -> float:
    return value * BYTES_PER_GB


def map_repository(repository: Repository, state: RepositoryState, host: str) -> Optional[MetricPoint]:
    """Build the point for one joined repository, or None for unsupported types."""
    if state.type not in SUPPORTED_REPOSITORY_TYPES:
        return None

    return MetricPoint(
        measurement=MEASUREMENT_REPOSITORIES,
        tags={
            HOST_TAG: host,
            "veeamVBRRepoName": state.name,
            "veeamVBRRepoType": state.type,
            # Tag name kept for existing dashboards
            "veeamVBRMSDescription": state.description,
            "veeamVBRRepopath": state.path.rstrip("\\/"),
            "veeamVBRRepoPerVM": "true" if repository.per_vm_backup else "false",
        },
        fields={
            "veeamVBRRepoMaxtasks": repository.max_task_count,
            "veeamVBRRepoCapacity": gb_to_bytes(state.capacity_gb),
            "veeamVBRRepoFree": gb_to_bytes(state.free_gb),
            "veeamVBRRepoUsed": gb_to_bytes(state.used_space_gb),
        },
    )


def map_repositories(
    repositories: Iterable[Repository],
    states: Iterable[RepositoryState],
    host: str,
    skipped: Optional[SkipCounter] = None,
) -> List[MetricPoint]:
    """Join configuration and capacity views by id and map the matches."""
    skipped = skipped if skipped is not None else SkipCounter()
    states_by_id = {}
    for state in states:
        states_by_id.setdefault(state.id, state)

    points = []
    for repository in repositories:
        state = states_by_id.get(repository.id)
        if state is None:
            logger.debug(f"Skipping repository without capacity data: {repository.name} ({repository.id})")
            skipped.add(SKIP_UNMATCHED)
            continue

        point = map_repository(repository, state, host)
        if point is None:
            logger.debug(f"Skipping repository with unknown type: {state.type} ({state.name})")
            skipped.add(SKIP_UNKNOWN_TYPE)
            continue
        points.append(point)
    return points


def map_proxies(proxies: Iterable[Proxy], host: str) -> List[MetricPoint]:
    return [
        MetricPoint(
            measurement=MEASUREMENT_PROXIES,
            tags={
                HOST_TAG: host,
                "veeamVBRProxyName": proxy.name,
                "veeamVBRProxyType": proxy.type,
                "veeamVBRProxyDescription": proxy.description,
                "veeamVBRProxyMode": proxy.transport_mode,
            },
            fields={"veeamVBRProxyTask": proxy.max_task_count},
        )
        for proxy in proxies
    ]


def map_backup_objects(objects: Iterable[BackupObject], host: str) -> List[MetricPoint]:
    return [
        MetricPoint(
            measurement=MEASUREMENT_BACKUP_OBJECTS,
            tags={
                HOST_TAG: host,
                "veeamVBRBobjectName": obj.name,
                "veeamVBRBobjecttype": obj.type,
                "veeamVBRBobjectPlatform": obj.platform_name,
                "veeamVBRBobjectviType": obj.vi_type,
                "veeamVBRBobjectObjectId": obj.object_id,
                "veeamVBRBobjectPath": obj.path,
            },
            fields={"restorePointsCount": obj.restore_points_count},
        )
        for obj in objects
    ]
