# src/readmap/__init__.py
from .orchestrator.dashboard import DashboardOrchestrator
from .mapping.renderer import MapRenderer, SnapshotRenderer


class ReadingMap:
    """
    Public interface: a reading-progress map kept in sync with the backend.
    """

    def __init__(self, renderer: MapRenderer, anchors, country_names=None, **kwargs):
        self._orch = DashboardOrchestrator(renderer, anchors, country_names=country_names, **kwargs)

    @property
    def controller(self):
        return self._orch.controller

    @property
    def popup(self):
        return self._orch.popup.popup

    async def refresh(self):
        """Poll stats and user locations once and wait for avatar sprites."""
        await self._orch.poll_once()

    def start(self):
        self._orch.start()

    async def stop(self):
        await self._orch.stop()

    def set_focus(self, focused: bool):
        self._orch.set_focus(focused)


__all__ = ["ReadingMap", "DashboardOrchestrator", "MapRenderer", "SnapshotRenderer"]
