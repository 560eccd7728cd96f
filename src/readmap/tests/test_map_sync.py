"""Tests for MapSyncController against the in-memory SnapshotRenderer."""

import json

import pytest

from readmap.mapping.map_sync import (
    ERROR_BANNER,
    FILL_LAYER,
    LABELS_SOURCE,
    MARKERS_LAYER,
    MARKERS_SOURCE,
    MapSyncController,
)
from readmap.mapping.color_tiers import NEUTRAL_COLOR
from readmap.mapping.renderer import SnapshotRenderer
from readmap.models.schemas import CountryProgress, Reading, UserLocation
from readmap.orchestrator.request_coordinator import PopupCoordinator
from readmap.services.fetch_client import FetchError

ANCHORS = {"BRA": (-50.0, -10.0), "USA": (-100.0, 40.0), "ARG": (-64.0, -34.0)}
NAMES = {"BRA": "Brasil", "USA": "Estados Unidos", "ARG": "Argentina"}


class FakeImages:
    def __init__(self, payloads):
        self.payloads = payloads
        self.calls = []

    async def __call__(self, url):
        self.calls.append(url)
        if url not in self.payloads:
            raise FetchError(url, "HTTP 404", 404, 1)
        return self.payloads[url]


class FakeReadings:
    def __init__(self):
        self.calls = []

    async def __call__(self, iso3):
        self.calls.append(iso3)
        return [Reading(user="ana", livro="Dom Casmurro", progresso=40)]


@pytest.fixture
def renderer():
    return SnapshotRenderer()


def _controller(renderer, images=None, readings=None):
    popup = PopupCoordinator(readings or FakeReadings(), NAMES)
    return MapSyncController(renderer, images or FakeImages({}), popup, ANCHORS, NAMES)


def _fill_color(renderer):
    return renderer.paint[FILL_LAYER]["fill-color"]


# =============================================================================
# TestLayers
# =============================================================================

class TestLayers:
    def test_layers_created_once(self, renderer):
        controller = _controller(renderer)
        controller.on_layers_ready()
        layer_count = len(renderer.layers)
        controller.on_layers_ready()

        assert len(renderer.layers) == layer_count
        assert FILL_LAYER in renderer.layers and MARKERS_LAYER in renderer.layers
        assert renderer.paint[FILL_LAYER]["fill-opacity"] == 0.9

    def test_existing_layers_are_reused(self, renderer):
        renderer.add_source(MARKERS_SOURCE, {"type": "geojson", "data": {"type": "FeatureCollection", "features": []}})
        controller = _controller(renderer)
        controller.on_layers_ready()
        assert controller.layers_ready

    def test_country_labels(self, renderer):
        controller = _controller(renderer)
        controller.on_layers_ready()
        labels = renderer.sources[LABELS_SOURCE]["data"]["features"]
        names = {f["properties"]["iso"]: f["properties"]["name"] for f in labels}
        assert names["BRA"] == "Brasil"

    def test_dispose_unsubscribes(self, renderer):
        controller = _controller(renderer)
        controller.on_layers_ready()
        assert renderer.fire("click", MARKERS_LAYER, (0.0, 0.0)) == 1

        controller.dispose()
        assert renderer.fire("click", MARKERS_LAYER, (0.0, 0.0)) == 0
        assert not controller.layers_ready


# =============================================================================
# TestCountryColors
# =============================================================================

class TestCountryColors:
    def test_updates_before_ready_are_deferred(self, renderer):
        controller = _controller(renderer)
        controller.update_progress([CountryProgress(iso3="BRA", progress=25)])
        assert renderer.paint_updates == 0

        controller.on_layers_ready()
        expr = _fill_color(renderer)
        assert expr[:3] == ["match", ["get", "ADM0_A3"], "BRA"]
        assert expr[-1] == NEUTRAL_COLOR

    def test_one_paint_update_per_refresh(self, renderer):
        controller = _controller(renderer)
        controller.on_layers_ready()
        before = renderer.paint_updates

        controller.update_progress(
            [CountryProgress(iso3=iso, progress=p) for iso, p in (("BRA", 10), ("USA", 50), ("ARG", 99))]
        )
        assert renderer.paint_updates == before + 1

    def test_no_progress_is_all_neutral(self, renderer):
        controller = _controller(renderer)
        controller.on_layers_ready()
        controller.update_progress([])
        assert _fill_color(renderer) == NEUTRAL_COLOR


# =============================================================================
# TestMarkers
# =============================================================================

class TestMarkers:
    @pytest.mark.asyncio
    async def test_markers_and_avatars(self, renderer, red_png):
        images = FakeImages({"https://cdn/ana.png": red_png})
        controller = _controller(renderer, images=images)
        controller.on_layers_ready()

        controller.update_users([
            UserLocation(user="ana", iso3="BRA", avatarURL="https://cdn/ana.png"),
            UserLocation(user="bob", iso3="BRA"),
            UserLocation(user="eve", iso3="ATA"),
        ])

        features = renderer.sources[MARKERS_SOURCE]["data"]["features"]
        assert [f["properties"]["user"] for f in features] == ["ana", "bob"]
        # placeholders are visible before any avatar loads
        assert {"avatar-ana", "avatar-bob", "avatar-eve"} <= set(renderer.sprites)
        placeholder = renderer.sprites["avatar-ana"]

        await controller.loader.wait_idle()
        assert images.calls == ["https://cdn/ana.png"]
        assert renderer.sprites["avatar-ana"] is not placeholder
        assert controller.image_progress().loaded == 1

    @pytest.mark.asyncio
    async def test_users_are_queued_once(self, renderer, red_png):
        images = FakeImages({"https://cdn/ana.png": red_png})
        controller = _controller(renderer, images=images)
        controller.on_layers_ready()

        controller.update_users([UserLocation(user="ana", iso3="BRA", avatarURL="https://cdn/ana.png")])
        await controller.loader.wait_idle()
        controller.update_users([UserLocation(user="ana", iso3="USA", avatarURL="https://cdn/ana-new.png")])
        await controller.loader.wait_idle()

        assert images.calls == ["https://cdn/ana.png"]
        coords = renderer.sources[MARKERS_SOURCE]["data"]["features"][0]["geometry"]["coordinates"]
        assert coords == [-98.8, 40.0]

    @pytest.mark.asyncio
    async def test_reset_requeues(self, renderer, red_png):
        images = FakeImages({"https://cdn/ana.png": red_png})
        controller = _controller(renderer, images=images)
        controller.on_layers_ready()
        users = [UserLocation(user="ana", iso3="BRA", avatarURL="https://cdn/ana.png")]

        controller.update_users(users)
        await controller.loader.wait_idle()
        controller.reset()
        controller.update_users(users)
        await controller.loader.wait_idle()

        assert len(images.calls) == 2

    @pytest.mark.asyncio
    async def test_failed_avatar_keeps_placeholder(self, renderer):
        controller = _controller(renderer)
        controller.on_layers_ready()
        controller.update_users([UserLocation(user="ana", iso3="BRA", avatarURL="https://cdn/missing.png")])
        placeholder = renderer.sprites["avatar-ana"]

        await controller.loader.wait_idle()
        assert renderer.sprites["avatar-ana"] is placeholder
        assert controller.loader.states["avatar-ana"] == "failed"

    def test_markers_deferred_until_ready(self, renderer):
        controller = _controller(renderer)
        controller.update_users([UserLocation(user="ana", iso3="BRA")])
        assert renderer.sprites == {}

        controller.on_layers_ready()
        assert len(renderer.sources[MARKERS_SOURCE]["data"]["features"]) == 1


# =============================================================================
# TestPointerEvents
# =============================================================================

class TestPointerEvents:
    @pytest.mark.asyncio
    async def test_marker_click_opens_country_popup(self, renderer):
        readings = FakeReadings()
        controller = _controller(renderer, readings=readings)
        controller.on_layers_ready()
        controller.update_users([UserLocation(user="ana", iso3="BRA")])

        payload = {"point": (-48.8, -10.0), "features": renderer.query_features((-48.8, -10.0), [MARKERS_LAYER])}
        task = controller.handle_click(payload)
        assert controller.popup.popup.loading
        await task

        assert readings.calls == ["BRA"]
        assert controller.popup.popup.display_name == "Brasil"
        assert controller.popup.popup.readers[0].book == "Dom Casmurro"

    def test_click_on_nothing(self, renderer):
        controller = _controller(renderer)
        controller.on_layers_ready()
        assert controller.handle_click({"point": (0.0, 0.0)}) is None
        assert controller.popup.popup is None

    def test_hover_known_country(self, renderer):
        controller = _controller(renderer)
        controller.on_layers_ready()
        controller.update_progress([CountryProgress(iso3="BRA", progress=55)])

        hover = controller.handle_hover(
            {"point": (5.0, 6.0), "features": [{"properties": {"ADM0_A3": "BRA"}}]}
        )
        assert hover.name == "Brasil"
        assert hover.month_name == "Janeiro"
        assert hover.progress == 55
        assert hover.tier_label == "No Meio (41-60%)"
        assert hover.cursor == (5.0, 6.0)

    def test_hover_without_progress_shows_nothing(self, renderer):
        controller = _controller(renderer)
        controller.on_layers_ready()
        hover = controller.handle_hover({"point": (0.0, 0.0), "features": [{"properties": {"ADM0_A3": "USA"}}]})
        assert hover is None

    def test_leave_clears_hover(self, renderer):
        controller = _controller(renderer)
        controller.on_layers_ready()
        controller.update_progress([CountryProgress(iso3="BRA", progress=55)])
        controller.handle_hover({"point": (0.0, 0.0), "features": [{"properties": {"iso_a3": "BRA"}}]})
        assert controller.hover is not None

        controller.handle_leave({})
        assert controller.hover is None


# =============================================================================
# TestErrorBanner
# =============================================================================

class TestErrorBanner:
    def test_banner_until_recovery(self, renderer):
        controller = _controller(renderer)
        controller.on_layers_ready()
        assert controller.banner is None

        controller.report_error("stats", FetchError("/api/stats", "HTTP 500", 500, 4))
        controller.report_error("users", FetchError("/api/users/locations", "HTTP 500", 500, 4))
        assert controller.banner == ERROR_BANNER

        controller.update_progress([])
        assert controller.banner == ERROR_BANNER
        controller.update_users([])
        assert controller.banner is None

    def test_last_good_state_is_kept_on_error(self, renderer):
        controller = _controller(renderer)
        controller.on_layers_ready()
        controller.update_progress([CountryProgress(iso3="BRA", progress=90)])
        painted = _fill_color(renderer)

        controller.report_error("stats", FetchError("/api/stats", "HTTP 500", 500, 4))
        assert _fill_color(renderer) == painted


# =============================================================================
# TestSnapshot
# =============================================================================

class TestSnapshot:
    @pytest.mark.asyncio
    async def test_save(self, tmp_path, red_png):
        renderer = SnapshotRenderer(str(tmp_path))
        controller = _controller(renderer, images=FakeImages({"https://cdn/a.png": red_png}))
        controller.on_layers_ready()
        controller.update_progress([CountryProgress(iso3="BRA", progress=25)])
        controller.update_users([UserLocation(user="ana/x", iso3="BRA", avatarURL="https://cdn/a.png")])
        await controller.loader.wait_idle()

        renderer.save()

        paint = json.loads((tmp_path / "paint.json").read_text())
        assert paint[FILL_LAYER]["fill-color"][0] == "match"
        markers = json.loads((tmp_path / "sources" / f"{MARKERS_SOURCE}.geojson").read_text())
        assert markers["features"][0]["properties"]["user"] == "ana/x"
        assert (tmp_path / "sprites" / "avatar-ana_x.png").exists()

    def test_save_without_directory(self):
        with pytest.raises(ValueError):
            SnapshotRenderer().save()
