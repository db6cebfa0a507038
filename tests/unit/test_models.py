"""Tests for decoding Veeam API payloads."""

from datetime import datetime, timedelta, timezone

import pytest

from veeam_collector.exceptions import DecodeError
from veeam_collector.models import (
    BackupSession,
    MetricPoint,
    Proxy,
    Repository,
    RepositoryState,
    ServerInfo,
    SessionResult,
    decode_collection,
    parse_timestamp,
)


@pytest.mark.unit
class TestTimestamps:

    def test_seven_fraction_digits(self):
        parsed = parse_timestamp("2024-03-01T22:00:00.1234567+01:00")
        assert parsed == datetime(2024, 3, 1, 21, 0, 0, 123456, tzinfo=timezone.utc)

    def test_zulu_suffix(self):
        assert parse_timestamp("2024-03-01T23:00:00Z").utcoffset() == timedelta(0)

    def test_naive_timestamp_assumed_utc(self):
        assert parse_timestamp("2024-03-01T23:00:00").tzinfo == timezone.utc

    @pytest.mark.parametrize("value", ["yesterday", 1709330400, None])
    def test_invalid(self, value):
        with pytest.raises(DecodeError):
            parse_timestamp(value, "endTime")


@pytest.mark.unit
class TestSessionResult:

    @pytest.mark.parametrize("value,expected", [
        ("Success", SessionResult.SUCCESS),
        ("Warning", SessionResult.WARNING),
        ("Failed", SessionResult.FAILED),
        ("None", SessionResult.NONE),
        ("Postponed", SessionResult.UNKNOWN),
        ("", SessionResult.UNKNOWN),
        (None, SessionResult.UNKNOWN),
    ])
    def test_parse_is_total(self, value, expected):
        assert SessionResult.parse(value) is expected

    def test_numeric_values(self):
        assert [r.numeric_value for r in SessionResult] == [1, 2, 3, None, None]


@pytest.mark.unit
class TestDecoding:

    def test_sessions(self, sample_session_payload):
        sessions = decode_collection(sample_session_payload, BackupSession.from_dict, "sessions")

        assert len(sessions) == 2
        finished, running = sessions
        assert finished.result is SessionResult.WARNING
        assert finished.result_message == "1 VM processed with warnings"
        assert finished.duration_seconds == pytest.approx(750.376544)
        assert running.result is SessionResult.NONE
        assert running.end_time is None
        assert running.duration_seconds is None

    def test_one_bad_record_fails_the_collection(self, sample_session_payload):
        sample_session_payload["data"][1]["creationTime"] = 12

        with pytest.raises(DecodeError, match=r"sessions\[1\]"):
            decode_collection(sample_session_payload, BackupSession.from_dict, "sessions")

    @pytest.mark.parametrize("payload", [[], {"data": None}, {"items": []}, "oops"])
    def test_bad_envelope(self, payload):
        with pytest.raises(DecodeError):
            decode_collection(payload, Proxy.from_dict, "proxies")

    def test_repository_configuration_view(self):
        repo = Repository.from_dict({
            "id": "88788f9e-d8f5-4eb4-bc4f-9b3f5403bcec",
            "name": "Default Backup Repository",
            "type": "WinLocal",
            "description": "Created by Veeam",
            "repository": {
                "path": "C:\\Backup",
                "maxTaskCount": 4,
                "advancedSettings": {"perVmBackup": True},
            },
        })
        assert repo.max_task_count == 4
        assert repo.per_vm_backup is True

    def test_repository_state_requires_numbers(self):
        with pytest.raises(DecodeError, match="capacityGB"):
            RepositoryState.from_dict({"id": "r1", "capacityGB": "100"})

    def test_repository_state_accepts_integers(self):
        state = RepositoryState.from_dict({"id": "r1", "type": "Smb", "capacityGB": 100, "freeGB": 1.5})
        assert state.capacity_gb == 100.0
        assert state.used_space_gb == 0.0

    def test_proxy_nested_server(self):
        proxy = Proxy.from_dict({
            "name": "VMware Backup Proxy",
            "type": "ViProxy",
            "server": {"transportMode": "auto", "maxTaskCount": 2},
        })
        assert proxy.transport_mode == "auto"
        assert proxy.max_task_count == 2

    def test_missing_name_is_rejected(self):
        with pytest.raises(DecodeError, match="name"):
            Proxy.from_dict({"type": "ViProxy"})

    def test_server_info(self):
        info = ServerInfo.from_dict({
            "vbrId": "abc",
            "name": "VBR01",
            "buildVersion": "12.1.0.2131",
            "databaseVendor": "PostgreSql",
            "patches": [],
        })
        assert info.build_version == "12.1.0.2131"


@pytest.mark.unit
class TestMetricPoint:

    def test_to_line_protocol(self):
        point = MetricPoint(
            measurement="veeam_vbr_proxies",
            tags={"veeamVBR": "vbr01", "veeamVBRProxyName": "proxy 1"},
            fields={"veeamVBRProxyTask": 2},
            time=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

        line = point.to_influx().to_line_protocol()

        assert line == (
            "veeam_vbr_proxies,veeamVBR=vbr01,veeamVBRProxyName=proxy\\ 1 "
            "veeamVBRProxyTask=2i 1704067200000000000"
        )
