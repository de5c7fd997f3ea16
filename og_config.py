"""
Card configuration for the OG image composer.

Owns every constant that affects what the card looks like: palette,
branding strings, asset file names and layout offsets. The composer
receives one OgCardConfig at construction, so another brand only needs
a different config instance.

Frozen dataclasses provide type checking and IDE support without
the indirection of YAML/JSON config files.
"""

import os
from dataclasses import dataclass, field
from typing import Tuple

RGBA = Tuple[int, int, int, int]


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class Palette:
    """Card colors as RGBA tuples."""
    background: RGBA = (32, 68, 57, 255)
    border: RGBA = (19, 51, 41, 255)     # portrait backdrop ring
    foreground: RGBA = (255, 255, 255, 255)


@dataclass(frozen=True)
class FontSpec:
    """A font file registered under a family name.

    file_name is relative to the asset directory.
    """
    family: str
    file_name: str


@dataclass(frozen=True)
class Branding:
    """Fixed strings and asset names printed on every card."""
    author_name: str = "Mehdi Jai"
    website: str = "mehdijai.com"
    author_picture: str = "thumbnail.png"
    decoration: str = "wave.svg"
    logo: str = "logo.svg"
    main_font: FontSpec = FontSpec("DejaVu Sans", "fonts/dejavu-sans.ttf")
    title_font: FontSpec = FontSpec("DejaVu Sans Bold", "fonts/dejavu-sans-bold.ttf")

    def image_names(self) -> Tuple[str, ...]:
        """Image assets in drawing order."""
        return (self.logo, self.decoration, self.author_picture)

    def asset_names(self) -> Tuple[str, ...]:
        """Every file the composer reads, fonts first."""
        return (
            self.main_font.file_name,
            self.title_font.file_name,
            self.logo,
            self.decoration,
            self.author_picture,
        )


@dataclass(frozen=True)
class CardLayout:
    """Canvas size and the fixed offsets every element is placed from (px)."""
    width: int = 1200
    height: int = 630

    title_size: int = 64
    label_size: int = 20
    label_bottom: int = 50          # website + author baselines, from bottom
    website_right: int = 80         # website label, from right edge
    author_left: int = 120          # leaves room for the portrait

    logo_top: int = 50
    logo_left_bias: int = 15        # logo sits slightly left of center

    decoration_scale: float = 0.6
    decoration_opacity: float = 0.7

    portrait_x: int = 80            # circle center, from left edge
    portrait_bottom: int = 60       # circle center, from bottom edge
    portrait_size: int = 50         # circle diameter

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)


@dataclass(frozen=True)
class OgCardConfig:
    """Top-level card configuration."""
    palette: Palette = field(default_factory=Palette)
    branding: Branding = field(default_factory=Branding)
    layout: CardLayout = field(default_factory=CardLayout)
    jpeg_quality: int = 100  # Pillow's maximum


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_CONFIG = OgCardConfig()


def default_assets_dir() -> str:
    """Asset directory: OG_ASSETS_DIR, else ./public under the working directory."""
    configured = os.environ.get("OG_ASSETS_DIR", "").strip()
    if configured:
        return configured
    return os.path.join(os.getcwd(), "public")
