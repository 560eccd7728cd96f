"""End-to-end tests for the dashboard orchestrator and the headless runner."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from readmap import ReadingMap
from readmap.config.settings import ReadMapSettings
from readmap.mapping.map_sync import ERROR_BANNER, FILL_LAYER, MARKERS_SOURCE
from readmap.mapping.renderer import SnapshotRenderer
from readmap.orchestrator.dashboard import DashboardOrchestrator
from readmap.run_dashboard import parse_args, run
from readmap.services.telemetry_api import TelemetryAPI

ANCHORS = {"BRA": (-50.0, -10.0), "USA": (-100.0, 40.0)}


@pytest.fixture
def backend(red_png):
    return Backend(red_png)


# =============================================================================
# Fake backend
# =============================================================================

class Backend:
    """MockTransport handler standing in for the telemetry API."""

    def __init__(self, avatar_png):
        self.avatar_png = avatar_png
        self.stats = {"countries": [{"iso3": "BRA", "progress": 25}], "total": 1}
        self.users = {
            "users": [
                {"user": "ana", "iso3": "BRA", "avatarURL": "https://cdn/ana.png"},
                {"user": "bob", "iso3": "USA", "avatarURL": "https://cdn/gone.png"},
            ],
            "total": 2,
        }
        self.fail = set()
        self.paths = []

    def __call__(self, request):
        path = request.url.path
        self.paths.append(path)
        if path in self.fail:
            return httpx.Response(500)
        if path == "/stats":
            return httpx.Response(200, json=self.stats)
        if path == "/users/locations":
            return httpx.Response(200, json=self.users)
        if path.startswith("/readings/"):
            return httpx.Response(200, json={"readings": [{"user": "ana", "livro": "Iracema", "progresso": 25}]})
        if path == "/proxy-image":
            if request.url.params.get("url") == "https://cdn/ana.png":
                return httpx.Response(200, content=self.avatar_png)
            return httpx.Response(404)
        return httpx.Response(404)


def _settings(**overrides):
    values = dict(
        _env_file=None,
        API_URL="http://api.test",
        FETCH_BASE_DELAY_S=0,
        FETCH_MAX_RETRIES=1,
        DEDUPE_WINDOW_S=0,
    )
    values.update(overrides)
    return ReadMapSettings(**values)


def _dashboard(backend, renderer=None, **overrides):
    settings = _settings(**overrides)
    http = httpx.AsyncClient(transport=httpx.MockTransport(backend))
    api = TelemetryAPI.from_settings(settings, client=http)
    return DashboardOrchestrator(renderer or SnapshotRenderer(), ANCHORS, api=api, settings=settings)


# =============================================================================
# TestDashboardOrchestrator
# =============================================================================

class TestDashboardOrchestrator:
    @pytest.mark.asyncio
    async def test_poll_once_renders_everything(self, backend):
        renderer = SnapshotRenderer()
        dashboard = _dashboard(backend, renderer)

        await dashboard.poll_once()

        assert renderer.paint[FILL_LAYER]["fill-color"][2] == "BRA"
        users = [f["properties"]["user"] for f in renderer.sources[MARKERS_SOURCE]["data"]["features"]]
        assert users == ["ana", "bob"]
        assert dashboard.controller.loader.states == {"avatar-ana": "succeeded", "avatar-bob": "failed"}
        assert dashboard.controller.banner is None
        # broken avatars are not retried
        assert backend.paths.count("/proxy-image") == 2

    @pytest.mark.asyncio
    async def test_failures_show_banner_then_recover(self, backend):
        backend.fail.add("/stats")
        dashboard = _dashboard(backend)

        await dashboard.poll_once()
        assert dashboard.controller.banner == ERROR_BANNER
        assert backend.paths.count("/stats") == 2

        backend.fail.clear()
        await dashboard.poll_once()
        assert dashboard.controller.banner is None

    @pytest.mark.asyncio
    async def test_stats_paused_when_unfocused(self, backend):
        dashboard = _dashboard(backend)
        dashboard.set_focus(False)

        await dashboard.poll_once()
        assert "/stats" not in backend.paths
        assert "/users/locations" in backend.paths
        assert dashboard.stats_poller.status.skipped == 1

    @pytest.mark.asyncio
    async def test_stats_keep_polling_when_pause_disabled(self, backend):
        dashboard = _dashboard(backend, PAUSE_STATS_WHEN_UNFOCUSED=False)
        dashboard.set_focus(False)

        await dashboard.poll_once()
        assert "/stats" in backend.paths

    @pytest.mark.asyncio
    async def test_click_fetches_readings(self, backend):
        renderer = SnapshotRenderer()
        dashboard = _dashboard(backend, renderer)
        await dashboard.poll_once()

        event = {"point": (-48.8, -10.0), "features": [{"properties": {"ADM0_A3": "BRA"}}]}
        await dashboard.controller.handle_click(event)

        assert "/readings/BRA" in backend.paths
        assert dashboard.popup.popup.readers[0].book == "Iracema"

    @pytest.mark.asyncio
    async def test_start_and_stop(self, backend):
        dashboard = _dashboard(backend)
        dashboard.start()
        assert dashboard.controller.layers_ready
        await dashboard.stop()
        assert not dashboard.controller.layers_ready

    @pytest.mark.asyncio
    async def test_facade(self, backend):
        settings = _settings()
        http = httpx.AsyncClient(transport=httpx.MockTransport(backend))
        reading_map = ReadingMap(
            SnapshotRenderer(),
            ANCHORS,
            api=TelemetryAPI.from_settings(settings, client=http),
            settings=settings,
        )

        await reading_map.refresh()
        assert reading_map.controller.layers_ready
        assert reading_map.popup is None
        await reading_map.stop()


# =============================================================================
# TestRunDashboard
# =============================================================================

class TestRunDashboard:
    def test_parse_args(self):
        args = parse_args(["--anchors", "a.json", "--once", "-v"])
        assert args.anchors == "a.json"
        assert args.once and args.verbose
        assert args.snapshot_every == 60.0

    @pytest.mark.asyncio
    async def test_missing_anchors(self, monkeypatch):
        monkeypatch.delenv("ANCHORS_PATH", raising=False)
        assert await run(parse_args(["--once"])) == 2

    @pytest.mark.asyncio
    async def test_once_writes_snapshot(self, tmp_path):
        anchors_file = tmp_path / "anchors.json"
        anchors_file.write_text(json.dumps({"bra": [-50.0, -10.0]}))
        out_dir = tmp_path / "out"

        with patch("readmap.run_dashboard.DashboardOrchestrator") as mock_cls:
            dashboard = MagicMock()
            dashboard.poll_once = AsyncMock()
            dashboard.stop = AsyncMock()
            dashboard.controller.banner = None
            mock_cls.return_value = dashboard

            code = await run(parse_args(["--anchors", str(anchors_file), "--snapshot-dir", str(out_dir), "--once"]))

        assert code == 0
        renderer, anchors = mock_cls.call_args.args
        assert anchors == {"BRA": (-50.0, -10.0)}
        dashboard.poll_once.assert_awaited_once()
        dashboard.stop.assert_awaited_once()
        assert (out_dir / "paint.json").exists()

    @pytest.mark.asyncio
    async def test_once_with_errors_exits_nonzero(self, tmp_path):
        anchors_file = tmp_path / "anchors.json"
        anchors_file.write_text(json.dumps({"BRA": [-50.0, -10.0]}))

        with patch("readmap.run_dashboard.DashboardOrchestrator") as mock_cls:
            dashboard = MagicMock()
            dashboard.poll_once = AsyncMock()
            dashboard.stop = AsyncMock()
            dashboard.controller.banner = ERROR_BANNER
            mock_cls.return_value = dashboard

            code = await run(
                parse_args(["--anchors", str(anchors_file), "--snapshot-dir", str(tmp_path / "o"), "--once"])
            )

        assert code == 1
