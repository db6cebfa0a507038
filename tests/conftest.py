"""Pytest configuration and shared fixtures."""

from datetime import datetime, timezone
from typing import Any, Dict
from unittest.mock import AsyncMock, Mock

import pytest

from veeam_collector.collector import VeeamCollector
from veeam_collector.config.settings import (
    CollectorConfig,
    HealthConfig,
    InfluxConfig,
    LoggingConfig,
    VeeamConfig,
)
from veeam_collector.models import (
    BackupObject,
    BackupSession,
    CycleSnapshot,
    ManagedServer,
    Proxy,
    Repository,
    RepositoryState,
    ServerInfo,
    SessionResult,
)
from veeam_collector.writers.influx_writer import InfluxWriter


VBR_HOST = "https://vbr.example.local:9419"
REPO_ID = "88788f9e-d8f5-4eb4-bc4f-9b3f5403bcec"


@pytest.fixture
def test_config() -> CollectorConfig:
    """Create test configuration."""
    return CollectorConfig(
        veeam=VeeamConfig(
            host=VBR_HOST,
            username="svc-metrics",
            password="secret",
            excluded_job_types=["MalwareDetection", "SecurityComplianceAnalyzer"],
        ),
        influx=InfluxConfig(
            host="http://localhost:8086",
            token="test-token",
            org="test-org",
            bucket="veeam",
        ),
        interval_seconds=3600,
        health=HealthConfig(host="127.0.0.1", port=18080, endpoint="/health"),
        logging=LoggingConfig(level="DEBUG"),
    )


@pytest.fixture
def server_info() -> ServerInfo:
    return ServerInfo(
        vbr_id="b9d3a2f4-0000-4d6c-8d3f-3b2a1f4e5c6d",
        name="VBR01",
        build_version="12.1.0.2131",
        database_vendor="PostgreSql",
    )


def make_session(**overrides) -> BackupSession:
    values = dict(
        id="s-1",
        name="Daily VM Backup",
        session_type="BackupJob",
        state="Stopped",
        result=SessionResult.SUCCESS,
        result_message="",
        creation_time=datetime(2024, 3, 1, 22, 0, 0, tzinfo=timezone.utc),
        end_time=datetime(2024, 3, 1, 22, 12, 30, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return BackupSession(**values)


@pytest.fixture
def session_factory():
    """Build BackupSession records with sensible defaults."""
    return make_session


@pytest.fixture
def sample_snapshot() -> CycleSnapshot:
    """One cycle with a record of every kind."""
    return CycleSnapshot(
        sessions=(make_session(),),
        managed_servers=(
            ManagedServer(id="m-1", name="vcenter.example.local", type="ViHost", description="vCenter"),
        ),
        repositories=(
            Repository(
                id=REPO_ID,
                name="Default Backup Repository",
                type="WinLocal",
                description="Created by Veeam",
                max_task_count=4,
                per_vm_backup=True,
            ),
        ),
        repository_states=(
            RepositoryState(
                id=REPO_ID,
                name="Default Backup Repository",
                type="WinLocal",
                description="Created by Veeam",
                path="D:\\Backup\\",
                capacity_gb=100.0,
                free_gb=40.0,
                used_space_gb=60.0,
            ),
        ),
        proxies=(
            Proxy(
                id="p-1",
                name="VMware Backup Proxy",
                type="ViProxy",
                description="Created by Veeam",
                transport_mode="auto",
                max_task_count=2,
            ),
        ),
        backup_objects=(
            BackupObject(
                id="o-1",
                name="web01",
                type="VM",
                platform_name="VMware",
                vi_type="VirtualMachine",
                object_id="vm-1001",
                path="vcenter.example.local\\DC1\\web01",
                restore_points_count=14,
            ),
        ),
    )


@pytest.fixture
def mock_collector(sample_snapshot, server_info) -> Mock:
    """Mock Veeam collector returning the sample snapshot."""
    collector = Mock(spec=VeeamCollector)
    collector.collect_cycle = AsyncMock(return_value=sample_snapshot)
    collector.probe = AsyncMock(return_value=server_info)
    return collector


@pytest.fixture
def mock_writer() -> Mock:
    """Mock InfluxDB writer recording the points it is given."""
    writer = Mock(spec=InfluxWriter)
    writer.points = []

    async def _write_point(point):
        writer.points.append(point)

    writer.write_point = AsyncMock(side_effect=_write_point)
    writer.flush = AsyncMock(return_value=0)
    writer.ping = AsyncMock(return_value=None)
    writer.close = AsyncMock()
    writer.flush_and_close = AsyncMock()
    return writer


@pytest.fixture
def sample_session_payload() -> Dict[str, Any]:
    """Sessions response as returned by GET /api/v1/sessions."""
    return {
        "data": [
            {
                "sessionType": "BackupJob",
                "state": "Stopped",
                "platformName": "VMware",
                "id": "0c4b2f8e-1111-4d3a-9f2e-6a1b2c3d4e5f",
                "name": "Daily VM Backup",
                "jobId": "1c4b2f8e-1111-4d3a-9f2e-6a1b2c3d4e5f",
                "creationTime": "2024-03-01T22:00:00.1234567+01:00",
                "endTime": "2024-03-01T22:12:30.5+01:00",
                "progressPercent": 100,
                "result": {"result": "Warning", "message": "1 VM processed with warnings", "isCanceled": False},
                "usn": 1234,
            },
            {
                "sessionType": "BackupJob",
                "state": "Working",
                "id": "2c4b2f8e-1111-4d3a-9f2e-6a1b2c3d4e5f",
                "name": "Hourly File Backup",
                "creationTime": "2024-03-01T23:00:00Z",
                "endTime": None,
                "result": {"result": "None", "message": "", "isCanceled": False},
            },
        ],
        "pagination": {"total": 2, "count": 2, "skip": 0, "limit": 200},
    }
