"""Tests for the Veeam REST client against an in-process fake API."""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from veeam_collector.clients.veeam_rest import VeeamRESTClient
from veeam_collector.config.settings import VeeamConfig
from veeam_collector.exceptions import DecodeError, VeeamConnectionError
from veeam_collector.models import SessionResult


REPO_ID = "88788f9e-d8f5-4eb4-bc4f-9b3f5403bcec"


class FakeVeeamAPI:
    """Minimal Veeam B&R REST API."""

    def __init__(self, sessions_payload):
        self.sessions_payload = sessions_payload
        self.token_requests = []
        self.requests = []
        self.expires_in = 900
        self.fail_paths = {}

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/oauth2/token", self.token)
        app.router.add_get("/api/v1/serverInfo", self.server_info)
        app.router.add_get("/api/v1/sessions", self.sessions)
        app.router.add_get("/api/v1/backupInfrastructure/repositories", self.repositories)
        app.router.add_get("/api/v1/backupInfrastructure/repositories/states", self.repository_states)
        app.router.add_get("/api/v1/backupInfrastructure/proxies", self.proxies)
        return app

    def _check(self, request):
        self.requests.append((request.path, dict(request.query), request.headers.get("Authorization")))
        if request.headers.get("x-api-version") != "1.2-rev0":
            raise web.HTTPBadRequest(text="missing x-api-version")
        if request.headers.get("Authorization") != "Bearer token-1":
            raise web.HTTPUnauthorized()
        if request.path in self.fail_paths:
            raise self.fail_paths[request.path](text="maintenance")

    async def token(self, request):
        form = await request.post()
        self.token_requests.append(dict(form))
        if form.get("password") != "secret":
            return web.json_response({"errorCode": "Unauthorized"}, status=401)
        return web.json_response({
            "access_token": "token-1",
            "token_type": "bearer",
            "refresh_token": "refresh-1",
            "expires_in": self.expires_in,
        })

    async def server_info(self, request):
        self._check(request)
        return web.json_response({
            "vbrId": "b9d3a2f4", "name": "VBR01", "buildVersion": "12.1.0.2131",
            "databaseVendor": "PostgreSql", "patches": [],
        })

    async def sessions(self, request):
        self._check(request)
        return web.json_response(self.sessions_payload)

    async def repositories(self, request):
        self._check(request)
        return web.json_response({"data": [{
            "id": REPO_ID, "name": "Default Backup Repository", "type": "WinLocal",
            "repository": {"maxTaskCount": 4, "advancedSettings": {"perVmBackup": False}},
        }]})

    async def repository_states(self, request):
        self._check(request)
        return web.json_response({"data": [{
            "id": request.query["idFilter"], "name": "Default Backup Repository", "type": "WinLocal",
            "path": "C:\\Backup", "capacityGB": 100, "freeGB": 40.5, "usedSpaceGB": 59.5, "isOnline": True,
        }]})

    async def proxies(self, request):
        self._check(request)
        return web.Response(text="<html>not json</html>", content_type="text/html")


def _config(server, password="secret"):
    return VeeamConfig(
        host=f"http://{server.host}:{server.port}",
        username="svc-metrics",
        password=password,
    )


@pytest.mark.asyncio
async def test_authenticates_once_and_sends_bearer(sample_session_payload):
    api = FakeVeeamAPI(sample_session_payload)
    async with TestServer(api.app()) as server:
        async with VeeamRESTClient(_config(server)) as client:
            info = await client.ping()
            sessions = await client.get_sessions()

    assert info.name == "VBR01"
    assert len(api.token_requests) == 1
    assert api.token_requests[0]["grant_type"] == "password"
    assert api.token_requests[0]["username"] == "svc-metrics"
    assert [s.result for s in sessions] == [SessionResult.WARNING, SessionResult.NONE]


@pytest.mark.asyncio
async def test_token_refreshed_before_expiry(sample_session_payload):
    api = FakeVeeamAPI(sample_session_payload)
    api.expires_in = 30  # inside the refresh margin
    async with TestServer(api.app()) as server:
        async with VeeamRESTClient(_config(server)) as client:
            await client.ping()
            await client.ping()

    assert len(api.token_requests) == 2


@pytest.mark.asyncio
async def test_bad_credentials(sample_session_payload):
    api = FakeVeeamAPI(sample_session_payload)
    async with TestServer(api.app()) as server:
        async with VeeamRESTClient(_config(server, password="wrong")) as client:
            with pytest.raises(VeeamConnectionError) as exc_info:
                await client.ping()

    assert exc_info.value.status == 401
    assert exc_info.value.component == "veeam"


@pytest.mark.asyncio
async def test_non_2xx_fails_the_call(sample_session_payload):
    api = FakeVeeamAPI(sample_session_payload)
    api.fail_paths["/api/v1/sessions"] = web.HTTPServiceUnavailable
    async with TestServer(api.app()) as server:
        async with VeeamRESTClient(_config(server)) as client:
            with pytest.raises(VeeamConnectionError, match="503"):
                await client.get_sessions()


@pytest.mark.asyncio
async def test_invalid_json_is_decode_error(sample_session_payload):
    api = FakeVeeamAPI(sample_session_payload)
    async with TestServer(api.app()) as server:
        async with VeeamRESTClient(_config(server)) as client:
            with pytest.raises(DecodeError, match="invalid JSON"):
                await client.get_proxies()


@pytest.mark.asyncio
async def test_repository_states_filtered_by_id(sample_session_payload):
    api = FakeVeeamAPI(sample_session_payload)
    async with TestServer(api.app()) as server:
        async with VeeamRESTClient(_config(server)) as client:
            repositories = await client.get_repositories()
            states = await client.get_repository_states(repositories[0].id)

    assert states[0].id == REPO_ID
    assert states[0].capacity_gb == 100.0
    state_requests = [r for r in api.requests if r[0].endswith("/states")]
    assert state_requests[0][1] == {"idFilter": REPO_ID}


@pytest.mark.asyncio
async def test_repository_id_must_be_uuid():
    async with VeeamRESTClient(VeeamConfig(host="http://127.0.0.1:1")) as client:
        with pytest.raises(DecodeError, match="repository id"):
            await client.get_repository_states("not-a-uuid")


@pytest.mark.asyncio
async def test_unreachable_server():
    async with VeeamRESTClient(VeeamConfig(host="http://127.0.0.1:1", password="secret")) as client:
        with pytest.raises(VeeamConnectionError, match="could not reach"):
            await client.ping()


@pytest.mark.asyncio
async def test_requires_open_session():
    client = VeeamRESTClient(VeeamConfig())
    with pytest.raises(RuntimeError):
        await client.get_sessions()
