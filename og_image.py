"""OpenGraph image composer.

Generates a 1200x630 branded JPEG card for a title:
  - solid background
  - title centered in the bold face
  - website (bottom-right) and author name (bottom-left) labels
  - logo, top center
  - decoration wave, centered at reduced opacity
  - circular author portrait, bottom-left

Assets (fonts and images) are read from a local directory on every call.
Decoded images are never cached. Font files go through a process-wide
registry, so each one is read and validated once per worker.
"""

import base64
import hashlib
import io
import logging
import math
import os
import threading
import time
from contextlib import contextmanager
from typing import Dict, List, Optional, Tuple

from PIL import Image, ImageChops, ImageDraw, ImageFont, UnidentifiedImageError

from og_config import DEFAULT_CONFIG, FontSpec, OgCardConfig, RGBA, default_assets_dir

logger = logging.getLogger(__name__)


class OgImageError(Exception):
    """Base class for every failure that aborts a card render."""

    pass


class AssetNotFoundError(OgImageError):
    """Raised when an asset file is missing or cannot be read."""

    pass


class AssetDecodeError(OgImageError):
    """Raised when an asset's bytes cannot be decoded into an image."""

    pass


class FontRegistrationError(OgImageError):
    """Raised when a font file is missing or is not a usable font."""

    pass


# =============================================================================
# Assets
# =============================================================================

MIME_TYPES = {
    "svg": "image/svg+xml",
    "png": "image/png",
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "webp": "image/webp",
}
DEFAULT_MIME_TYPE = MIME_TYPES["png"]


def mimetype_for(file_name: str) -> str:
    """Guess an image MIME type from the exact file extension, defaulting to PNG."""
    extension = file_name.rsplit(".", 1)[-1] if "." in file_name else ""
    return MIME_TYPES.get(extension, DEFAULT_MIME_TYPE)


def _rasterize_svg(data: bytes) -> bytes:
    """Render SVG bytes to PNG bytes at the document's natural size."""
    # cairosvg is imported lazily: it needs the native cairo library and
    # raster-only deployments should still start without it.
    try:
        import cairosvg
    except (ImportError, OSError) as e:
        raise AssetDecodeError(f"SVG rendering unavailable: {e}") from e
    try:
        return cairosvg.svg2png(bytestring=data)
    except Exception as e:
        raise AssetDecodeError(f"Invalid SVG data: {e}") from e


class AssetStore:
    """Reads card assets from a single directory by file name."""

    def __init__(self, root: str):
        self.root = root

    def path(self, name: str) -> str:
        return os.path.join(self.root, name)

    def read_bytes(self, name: str) -> bytes:
        path = self.path(name)
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise AssetNotFoundError(f"Cannot read asset {name!r} at {path}: {e}") from e

    def missing(self, names) -> List[str]:
        """Return the subset of names with no file behind them."""
        return [name for name in names if not os.path.isfile(self.path(name))]

    def data_uri(self, name: str) -> str:
        """Return the asset as a base64 data URI."""
        payload = base64.b64encode(self.read_bytes(name)).decode("ascii")
        return f"data:{mimetype_for(name)};base64,{payload}"

    def load_image(self, name: str) -> Image.Image:
        """Read and decode an image asset into an RGBA image.

        SVG is chosen by extension; everything else is left to Pillow,
        which identifies the real format from the bytes.
        """
        data = self.read_bytes(name)
        if mimetype_for(name) == MIME_TYPES["svg"]:
            data = _rasterize_svg(data)
        try:
            with Image.open(io.BytesIO(data)) as im:
                im.load()
                return im.convert("RGBA")
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise AssetDecodeError(f"Cannot decode image asset {name!r}: {e}") from e


# =============================================================================
# Font registry
# =============================================================================

# family name -> (sha256 of font bytes, font bytes)
_fonts: Dict[str, Tuple[str, bytes]] = {}
_fonts_lock = threading.Lock()


def register_font(family: str, path: str) -> None:
    """Register a font file under a family name.

    Re-registering a family with identical font data is a no-op. New data
    under an existing family replaces the old entry.
    """
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise FontRegistrationError(f"Cannot read font {path}: {e}") from e

    digest = hashlib.sha256(data).hexdigest()
    with _fonts_lock:
        existing = _fonts.get(family)
        if existing is not None and existing[0] == digest:
            return

    try:
        ImageFont.truetype(io.BytesIO(data), 10)
    except OSError as e:
        raise FontRegistrationError(f"Not a usable font file {path}: {e}") from e

    with _fonts_lock:
        if family in _fonts and _fonts[family][0] != digest:
            logger.warning("Font family %r re-registered with different data from %s", family, path)
        _fonts[family] = (digest, data)
    logger.info("Registered font %r from %s", family, path)


def get_font(family: str, size: int) -> ImageFont.FreeTypeFont:
    """Return a registered family at the given pixel size."""
    with _fonts_lock:
        entry = _fonts.get(family)
    if entry is None:
        raise FontRegistrationError(f"Font family {family!r} is not registered")
    return ImageFont.truetype(io.BytesIO(entry[1]), size)


def registered_families() -> List[str]:
    with _fonts_lock:
        return sorted(_fonts)


def clear_font_registry() -> None:
    with _fonts_lock:
        _fonts.clear()


# =============================================================================
# Drawing surface
# =============================================================================

_CLIP_SUPERSAMPLE = 4


def _circle_mask(size: Tuple[int, int], center: Tuple[float, float], radius: float) -> Image.Image:
    """Anti-aliased L-mode mask, 255 inside the circle."""
    mask = Image.new("L", size, 0)
    cx, cy = center
    left = math.floor(cx - radius) - 1
    top = math.floor(cy - radius) - 1
    extent = math.ceil(2 * radius) + 3

    patch = Image.new("L", (extent * _CLIP_SUPERSAMPLE, extent * _CLIP_SUPERSAMPLE), 0)
    ox = (cx - left) * _CLIP_SUPERSAMPLE
    oy = (cy - top) * _CLIP_SUPERSAMPLE
    r = radius * _CLIP_SUPERSAMPLE
    ImageDraw.Draw(patch).ellipse([ox - r, oy - r, ox + r, oy + r], fill=255)
    patch = patch.resize((extent, extent), Image.Resampling.LANCZOS)
    mask.paste(patch, (left, top))
    return mask


class Surface:
    """RGBA canvas with a global opacity and an optional clip mask.

    Every draw goes onto a transparent full-size layer that is alpha
    composited onto the canvas, so opacity and clipping apply uniformly
    to shapes, text and images.
    """

    def __init__(self, size: Tuple[int, int], color: RGBA = (0, 0, 0, 0)):
        self._image = Image.new("RGBA", size, color)
        self.global_alpha = 1.0
        self._clip: Optional[Image.Image] = None

    @property
    def image(self) -> Image.Image:
        return self._image

    @property
    def size(self) -> Tuple[int, int]:
        return self._image.size

    @property
    def clip(self) -> Optional[Image.Image]:
        return self._clip

    def _blank(self) -> Image.Image:
        return Image.new("RGBA", self.size, (0, 0, 0, 0))

    def _composite(self, layer: Image.Image) -> None:
        if self.global_alpha < 1.0 or self._clip is not None:
            alpha = layer.getchannel("A")
            if self.global_alpha < 1.0:
                factor = self.global_alpha
                alpha = alpha.point(lambda a: round(a * factor))
            if self._clip is not None:
                alpha = ImageChops.multiply(alpha, self._clip)
            layer.putalpha(alpha)
        self._image = Image.alpha_composite(self._image, layer)

    @contextmanager
    def opacity(self, alpha: float):
        """Multiply the opacity of every draw inside the block."""
        previous = self.global_alpha
        self.global_alpha = previous * alpha
        try:
            yield self
        finally:
            self.global_alpha = previous

    @contextmanager
    def clip_circle(self, center: Tuple[float, float], radius: float):
        """Restrict draws inside the block to a circle."""
        previous = self._clip
        mask = _circle_mask(self.size, center, radius)
        self._clip = mask if previous is None else ImageChops.multiply(previous, mask)
        try:
            yield self
        finally:
            self._clip = previous

    def fill(self, color: RGBA) -> None:
        self._composite(Image.new("RGBA", self.size, color))

    def rectangle(self, box, fill: RGBA) -> None:
        layer = self._blank()
        ImageDraw.Draw(layer).rectangle(box, fill=fill)
        self._composite(layer)

    def circle(self, center: Tuple[float, float], radius: float,
               fill: Optional[RGBA] = None, outline: Optional[RGBA] = None,
               width: int = 1) -> None:
        cx, cy = center
        layer = self._blank()
        ImageDraw.Draw(layer).ellipse(
            [cx - radius, cy - radius, cx + radius, cy + radius],
            fill=fill, outline=outline, width=width,
        )
        self._composite(layer)

    def text(self, xy: Tuple[float, float], text: str, font: ImageFont.FreeTypeFont,
             fill: RGBA, anchor: str = "la") -> None:
        if not text:
            return
        layer = self._blank()
        ImageDraw.Draw(layer).text(xy, text, font=font, fill=fill, anchor=anchor)
        self._composite(layer)

    def draw_image(self, image: Image.Image, xy: Tuple[float, float],
                   size: Optional[Tuple[float, float]] = None) -> None:
        """Draw an image with its top-left at xy, resized to size if given."""
        if size is not None:
            target = (max(1, round(size[0])), max(1, round(size[1])))
            if target != image.size:
                image = image.resize(target, Image.Resampling.LANCZOS)
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        layer = self._blank()
        layer.paste(image, (round(xy[0]), round(xy[1])))
        self._composite(layer)

    def to_jpeg(self, quality: int) -> bytes:
        buf = io.BytesIO()
        self._image.convert("RGB").save(buf, format="JPEG", quality=quality)
        return buf.getvalue()


# =============================================================================
# Composer
# =============================================================================

class ImageComposer:
    """Draws the OG card for a title.

    One instance can serve any number of requests; each compose() call
    builds its own Surface and re-reads every image asset.
    """

    def __init__(self, config: OgCardConfig = DEFAULT_CONFIG, assets_dir: Optional[str] = None):
        self.config = config
        self.assets = AssetStore(assets_dir or default_assets_dir())

    def compose(self, title: str) -> bytes:
        """Return JPEG bytes for the card. Raises OgImageError on any asset failure."""
        started = time.monotonic()
        surface = self.render(title)
        data = surface.to_jpeg(self.config.jpeg_quality)
        logger.debug(
            "Composed OG image for %r: %d bytes in %.1f ms",
            title, len(data), (time.monotonic() - started) * 1000,
        )
        return data

    def render(self, title: str) -> Surface:
        """Run every drawing step and return the finished surface."""
        surface = self._init_surface()
        self._paint_background(surface)
        self._add_title(surface, title)
        self._add_website(surface)
        self._add_author_name(surface)
        self._add_logo(surface)
        self._add_decoration(surface)
        self._add_author_picture(surface)
        return surface

    def _init_surface(self) -> Surface:
        surface = Surface(self.config.layout.size)
        self.register_fonts()
        return surface

    def register_fonts(self) -> None:
        branding = self.config.branding
        for spec in (branding.main_font, branding.title_font):
            register_font(spec.family, self.assets.path(spec.file_name))

    def _font(self, spec: FontSpec, size: int) -> ImageFont.FreeTypeFont:
        return get_font(spec.family, size)

    def _paint_background(self, surface: Surface) -> None:
        surface.fill(self.config.palette.background)

    def _add_title(self, surface: Surface, title: str) -> None:
        layout = self.config.layout
        font = self._font(self.config.branding.title_font, layout.title_size)
        surface.text(
            (layout.width / 2, layout.height / 2), title,
            font=font, fill=self.config.palette.foreground, anchor="mm",
        )

    def _add_website(self, surface: Surface) -> None:
        layout = self.config.layout
        font = self._font(self.config.branding.main_font, layout.label_size)
        surface.text(
            (layout.width - layout.website_right, layout.height - layout.label_bottom),
            self.config.branding.website,
            font=font, fill=self.config.palette.foreground, anchor="rd",
        )

    def _add_author_name(self, surface: Surface) -> None:
        layout = self.config.layout
        font = self._font(self.config.branding.main_font, layout.label_size)
        surface.text(
            (layout.author_left, layout.height - layout.label_bottom),
            self.config.branding.author_name,
            font=font, fill=self.config.palette.foreground, anchor="ld",
        )

    def _add_logo(self, surface: Surface) -> None:
        layout = self.config.layout
        logo = self.assets.load_image(self.config.branding.logo)
        surface.draw_image(logo, (layout.width / 2 - layout.logo_left_bias, layout.logo_top))

    def _add_decoration(self, surface: Surface) -> None:
        layout = self.config.layout
        wave = self.assets.load_image(self.config.branding.decoration)

        width = wave.width * layout.decoration_scale
        height = wave.height * layout.decoration_scale
        with surface.opacity(layout.decoration_opacity):
            surface.draw_image(
                wave,
                (layout.width / 2 - width / 2, layout.height / 2 - height / 2),
                (width, height),
            )

    def _add_author_picture(self, surface: Surface) -> None:
        layout = self.config.layout
        pic = self.assets.load_image(self.config.branding.author_picture)

        x = layout.portrait_x
        y = layout.height - layout.portrait_bottom
        size = layout.portrait_size
        border = self.config.palette.border

        surface.circle((x, y), size / 2, fill=border, outline=border)
        with surface.clip_circle((x, y), size / 2):
            aspect = pic.height / pic.width
            surface.draw_image(pic, (x - size / 2, y - size / 2), (size, size * aspect))
