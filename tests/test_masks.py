"""Tests for mask rasterization and collision-free naming."""

import pytest
from PIL import Image

from asset_refiner.errors import IOFailure
from asset_refiner.masks import MaskGenerator
from asset_refiner.schemas import BoundingBox


def test_mask_matches_asset_dimensions(tmp_path):
    path = MaskGenerator(tmp_path).generate(BoundingBox(x=10, y=20, w=30, h=40), 120, 80, "alice")

    with Image.open(path) as mask:
        assert mask.format == "PNG"
        assert mask.mode == "RGBA"
        assert mask.size == (120, 80)


def test_mask_is_opaque_exactly_inside_the_box(tmp_path):
    box = BoundingBox(x=10, y=20, w=30, h=40)
    path = MaskGenerator(tmp_path).generate(box, 120, 80, "alice")

    with Image.open(path) as mask:
        alpha = mask.getchannel("A")
        assert alpha.getpixel((10, 20)) == 255
        assert alpha.getpixel((39, 59)) == 255
        assert alpha.getpixel((9, 20)) == 0
        assert alpha.getpixel((10, 19)) == 0
        assert alpha.getpixel((40, 59)) == 0
        assert alpha.getpixel((39, 60)) == 0
        opaque = sum(1 for a in alpha.getdata() if a == 255)
        assert opaque == 30 * 40


def test_mask_clamps_regions_that_overflow(tmp_path):
    path = MaskGenerator(tmp_path).generate(BoundingBox(x=90, y=70, w=50, h=50), 100, 80, "loc")

    with Image.open(path) as mask:
        assert mask.size == (100, 80)
        opaque = sum(1 for a in mask.getchannel("A").getdata() if a == 255)
        assert opaque == 10 * 10


def test_mask_never_overwrites(tmp_path):
    generator = MaskGenerator(tmp_path)
    box = BoundingBox(x=0, y=0, w=5, h=5)

    first = generator.generate(box, 50, 50, "alice")
    second = generator.generate(box, 50, 50, "alice")
    third = generator.generate(box, 50, 50, "alice")

    assert first.name == "alice.mask.png"
    assert second.name == "alice.mask-1.png"
    assert third.name == "alice.mask-2.png"


def test_mask_skips_existing_foreign_files(tmp_path):
    (tmp_path / "alice.mask.png").write_bytes(b"not ours")

    path = MaskGenerator(tmp_path).generate(BoundingBox(x=0, y=0, w=5, h=5), 50, 50, "alice")

    assert path.name == "alice.mask-1.png"
    assert (tmp_path / "alice.mask.png").read_bytes() == b"not ours"


def test_mask_creates_missing_directories(tmp_path):
    target = tmp_path / "run" / "masks"
    path = MaskGenerator(target).generate(BoundingBox(x=0, y=0, w=5, h=5), 50, 50, "alice")
    assert path.parent == target


def test_unwritable_target_raises_io_failure(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file where a directory should be")

    with pytest.raises(IOFailure):
        MaskGenerator(blocker).generate(BoundingBox(x=0, y=0, w=5, h=5), 50, 50, "alice")
