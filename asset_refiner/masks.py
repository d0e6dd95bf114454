"""Rasterizes an edit region into an RGBA mask image."""

import logging
from pathlib import Path

from PIL import Image, ImageDraw

from .errors import IOFailure
from .files import write_exclusive
from .geometry import clamp
from .schemas import BoundingBox

logger = logging.getLogger(__name__)


class MaskGenerator:
    """Builds full-size masks whose opaque pixels mark the editable region."""

    def __init__(self, output_dir: Path):
        """Initialize the generator.

        Args:
            output_dir: Directory the masks are written to.
        """
        self.output_dir = Path(output_dir)

    def render(self, box: BoundingBox, width: int, height: int) -> Image.Image:
        """Render the mask in memory.

        Pixels inside the (clamped) box are opaque black, every other pixel is
        fully transparent.
        """
        region = clamp(box, width, height)
        mask = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        draw = ImageDraw.Draw(mask)
        # PIL rectangles include their end coordinates
        draw.rectangle(
            [region.x, region.y, region.right - 1, region.bottom - 1],
            fill=(0, 0, 0, 255),
        )
        return mask

    def generate(self, box: BoundingBox, width: int, height: int, stem: str) -> Path:
        """Render the mask and save it as PNG next to the other run artifacts.

        Args:
            box: Region to mark editable.
            width: Width of the asset being edited.
            height: Height of the asset being edited.
            stem: Base file name, usually the asset's stem.

        Returns:
            Path of the written mask.

        Raises:
            IOFailure: If the mask cannot be written.
        """
        mask = self.render(box, width, height)
        try:
            path = write_exclusive(
                self.output_dir,
                f"{stem}.mask",
                "png",
                lambda f: mask.save(f, format="PNG"),
            )
        except OSError as exc:
            raise IOFailure(f"could not write mask for {stem} in {self.output_dir}: {exc}") from exc

        logger.debug("Wrote mask %s for region %s", path, box)
        return path
