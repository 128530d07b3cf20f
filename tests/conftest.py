import io

import pytest
from PIL import Image

from common.storage import LocalJobStore


class IdentityRemover:
    """Stands in for the model: keeps every pixel, adds an opaque alpha channel."""

    def __init__(self):
        self.calls = 0

    async def remove_background(self, image):
        self.calls += 1
        return image.convert("RGBA")


@pytest.fixture
def store(tmp_path):
    s = LocalJobStore(tmp_path / "jobs")
    s.init()
    return s


@pytest.fixture
def identity_remover():
    return IdentityRemover()


@pytest.fixture
def make_png():
    def _make(width=8, height=8, alpha=255, mode="RGBA"):
        if mode == "RGBA":
            image = Image.new("RGBA", (width, height), (200, 40, 40, alpha))
        else:
            image = Image.new(mode, (width, height))
        buf = io.BytesIO()
        image.save(buf, format="PNG")
        return buf.getvalue()

    return _make
