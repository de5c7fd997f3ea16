"""Shared fixtures for the OG card test suite.

Provides a temporary asset directory with raster stand-ins for the SVG
logo and wave (so most tests run without the native cairo library), a
composer wired to it, and a Flask test client pointed at the same assets.
"""

import os
import shutil

import pytest
from PIL import Image, ImageDraw

from og_config import Branding, OgCardConfig
from og_image import ImageComposer, clear_font_registry

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
PUBLIC_DIR = os.path.join(REPO_ROOT, "public")

RASTER_CONFIG = OgCardConfig(branding=Branding(logo="logo.png", decoration="wave.png"))


def _write_assets(root):
    os.makedirs(os.path.join(root, "fonts"))
    for spec in (RASTER_CONFIG.branding.main_font, RASTER_CONFIG.branding.title_font):
        shutil.copy(os.path.join(PUBLIC_DIR, spec.file_name), os.path.join(root, spec.file_name))
    shutil.copy(
        os.path.join(PUBLIC_DIR, RASTER_CONFIG.branding.author_picture),
        os.path.join(root, RASTER_CONFIG.branding.author_picture),
    )

    logo = Image.new("RGBA", (40, 40), (0, 0, 0, 0))
    ImageDraw.Draw(logo).rectangle([4, 4, 35, 35], outline=(255, 255, 255, 255), width=3)
    logo.save(os.path.join(root, RASTER_CONFIG.branding.logo))

    wave = Image.new("RGBA", (1000, 300), (0, 0, 0, 0))
    ImageDraw.Draw(wave).rectangle([0, 120, 999, 180], fill=(60, 140, 110, 255))
    wave.save(os.path.join(root, RASTER_CONFIG.branding.decoration))


@pytest.fixture(autouse=True)
def _fresh_fonts():
    """Every test starts with an empty font registry."""
    clear_font_registry()
    yield
    clear_font_registry()


@pytest.fixture()
def asset_dir(tmp_path):
    root = str(tmp_path / "public")
    _write_assets(root)
    return root


@pytest.fixture()
def composer(asset_dir):
    return ImageComposer(RASTER_CONFIG, assets_dir=asset_dir)


@pytest.fixture()
def client(asset_dir, monkeypatch):
    """Flask test client rendering from the temporary asset directory."""
    from app import app, limiter

    monkeypatch.setitem(app.config, "OG_ASSETS_DIR", asset_dir)
    monkeypatch.setitem(app.config, "OG_CARD_CONFIG", RASTER_CONFIG)
    app.config["TESTING"] = True
    limiter.reset()
    with app.test_client() as c:
        yield c
