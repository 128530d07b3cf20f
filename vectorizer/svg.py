import io
import logging
from typing import List, Union

from jinja2 import Environment
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel

from common.config import ALPHA_THRESHOLD, MAX_REGION_PIXELS, MIN_REGION_PIXELS, SAMPLE_STRIDE
from common.errors import DecodeError
from vectorizer.paths import region_to_path
from vectorizer.regions import extract_regions

logger = logging.getLogger(__name__)

_env = Environment(autoescape=True, keep_trailing_newline=True)
_SVG_TEMPLATE = _env.from_string(
    '<svg width="{{ width }}" height="{{ height }}" xmlns="http://www.w3.org/2000/svg">\n'
    '  <g fill="{{ fill }}" stroke="none">\n'
    '{% for d in paths %}    <path d="{{ d }}"/>\n{% endfor %}'
    "  </g>\n"
    "</svg>\n"
)


class VectorDocument(BaseModel):
    """Sized canvas plus filled path primitives. Colour is not preserved."""

    width: int
    height: int
    paths: List[str] = []
    fill: str = "black"

    def to_svg(self) -> str:
        return _SVG_TEMPLATE.render(width=self.width, height=self.height, fill=self.fill, paths=self.paths)

    def to_bytes(self) -> bytes:
        return self.to_svg().encode("utf-8")


def decode_image(data: bytes) -> Image.Image:
    """Decode encoded image bytes (PNG, JPEG, ...) into a loaded PIL image."""
    if not isinstance(data, (bytes, bytearray)):
        raise DecodeError(f"Unsupported raster type: {type(data).__name__}")
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeError(f"Failed to decode image: {e}") from e
    return image


def encode_png(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def load_raster(raster: Union[bytes, Image.Image]) -> Image.Image:
    """Decode ``raster`` and make sure it carries an alpha channel.

    Raises:
        DecodeError: if the data is not an image or has no alpha channel
    """
    image = raster if isinstance(raster, Image.Image) else decode_image(raster)

    # Palette images keep transparency out of band
    if image.mode == "P" and "transparency" in image.info:
        image = image.convert("RGBA")
    if "A" not in image.getbands():
        raise DecodeError(f"Image has no alpha channel (mode {image.mode})")
    return image


def vectorize(
    raster: Union[bytes, Image.Image],
    threshold: int = ALPHA_THRESHOLD,
    stride: int = SAMPLE_STRIDE,
    max_pixels: int = MAX_REGION_PIXELS,
    min_pixels: int = MIN_REGION_PIXELS,
) -> VectorDocument:
    """Trace the foreground of an image with alpha into a vector document."""
    image = load_raster(raster)
    width, height = image.size
    alpha = image.getchannel("A").tobytes()

    regions = extract_regions(alpha, width, height, threshold, stride, max_pixels, min_pixels)
    paths = [path for path in (region_to_path(region) for region in regions) if path]
    logger.debug("Traced %d regions from %dx%d image", len(paths), width, height)

    return VectorDocument(width=width, height=height, paths=paths)
