"""Shared fixtures for readmap tests."""

import io

import pytest
from PIL import Image


def make_png(color=(255, 0, 0, 255), size=(64, 64)) -> bytes:
    """Encode a solid-color PNG."""
    buffer = io.BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def red_png():
    return make_png()


@pytest.fixture
def wide_png():
    return make_png(color=(0, 0, 255, 255), size=(100, 50))


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def fake_sleep():
    return RecordingSleep()
