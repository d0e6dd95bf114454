"""SD3 image synthesis and inpainting via Diffusers."""

import asyncio
import logging
import random
import re
import threading
from pathlib import Path
from typing import Optional, Protocol

import torch
from diffusers import StableDiffusion3InpaintPipeline, StableDiffusion3Pipeline
from PIL import Image

import config

from .errors import EditFailure, SynthesisFailure
from .files import write_exclusive
from .schemas import AssetRef, RefinementContext

logger = logging.getLogger(__name__)

# SD3 latents need dimensions divisible by this
SD3_DIMENSION_MULTIPLE = 16


class ImageSynthesisService(Protocol):
    """Produces a brand-new asset from descriptive context."""

    async def create(self, context: RefinementContext) -> AssetRef:
        ...


class ImageEditService(Protocol):
    """Edits an asset inside the opaque region of a mask."""

    async def edit(self, asset: AssetRef, mask: Path, instruction: str) -> AssetRef:
        ...


def build_prompt(context: RefinementContext) -> str:
    """Flatten a refinement context into a text-to-image prompt."""
    parts = [f"{context.style} style", context.description.strip()]
    parts.extend(context.characteristics)
    parts.extend(context.situational)
    if context.pose:
        parts.append(context.pose)
    if context.mood:
        parts.append(f"{context.mood} mood")
    return ", ".join(p for p in parts if p)


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "asset"


def _sd3_dimension(value: int) -> int:
    return max(SD3_DIMENSION_MULTIPLE, value - value % SD3_DIMENSION_MULTIPLE)


def _save_png(image: Image.Image, directory: Path, stem: str) -> Path:
    return write_exclusive(directory, stem, "png", lambda f: image.save(f, format="PNG"))


class DiffusersImageGenerator:
    """Generates candidate assets using Stable Diffusion 3."""

    def __init__(
        self,
        output_dir: Path = config.OUTPUTS_DIR,
        model_id: str = config.SD3_MODEL_ID,
        device: str = "cuda",
        dtype: torch.dtype = torch.float16,
        num_inference_steps: int = config.NUM_INFERENCE_STEPS,
        guidance_scale: float = config.GUIDANCE_SCALE,
        size: int = config.IMAGE_SIZE,
        negative_prompt: str = config.DEFAULT_NEGATIVE_PROMPT,
    ):
        """Initialize the SD3 generator.

        Args:
            output_dir: Directory the generated images are saved to.
            model_id: HuggingFace model ID for SD3.
            device: Device to run inference on.
            dtype: Torch dtype for model weights.
            num_inference_steps: Number of denoising steps.
            guidance_scale: Classifier-free guidance scale.
            size: Width and height of generated images.
            negative_prompt: Things to avoid in every image.
        """
        self.output_dir = Path(output_dir)
        self.model_id = model_id
        self.device = device
        self.dtype = dtype
        self.num_inference_steps = num_inference_steps
        self.guidance_scale = guidance_scale
        self.size = size
        self.negative_prompt = negative_prompt
        self._pipeline: Optional[StableDiffusion3Pipeline] = None
        # one GPU pipeline shared by every concurrent refinement run
        self._lock = threading.Lock()

    @property
    def pipeline(self) -> StableDiffusion3Pipeline:
        """Lazy-load the pipeline on first use."""
        if self._pipeline is None:
            self._pipeline = StableDiffusion3Pipeline.from_pretrained(
                self.model_id,
                torch_dtype=self.dtype,
            )
            self._pipeline.to(self.device)
            self._pipeline.enable_attention_slicing()
        return self._pipeline

    def _generate(self, prompt: str, seed: int) -> Image.Image:
        with self._lock:
            generator = torch.Generator(device=self.device).manual_seed(seed)
            result = self.pipeline(
                prompt=prompt,
                negative_prompt=self.negative_prompt,
                num_inference_steps=self.num_inference_steps,
                guidance_scale=self.guidance_scale,
                width=self.size,
                height=self.size,
                generator=generator,
            )
            image = result.images[0]
            if torch.cuda.is_available():
                torch.cuda.empty_cache()
        return image

    async def create(self, context: RefinementContext) -> AssetRef:
        """Generate a new candidate for the context and save it.

        Raises:
            SynthesisFailure: If generation or saving fails.
        """
        prompt = build_prompt(context)
        seed = random.randint(0, 2**32 - 1)
        logger.info("Generating %s '%s' (seed %d)", context.kind.value, context.name, seed)

        try:
            image = await asyncio.to_thread(self._generate, prompt, seed)
            path = _save_png(image, self.output_dir, slugify(context.name))
        except Exception as exc:
            raise SynthesisFailure(f"image generation failed for '{context.name}': {exc}") from exc

        return AssetRef(
            path=path,
            width=image.width,
            height=image.height,
            prompt=prompt,
            seed=seed,
            model=self.model_id,
        )


class DiffusersImageEditor:
    """Repaints the masked region of an asset with SD3 inpainting."""

    def __init__(
        self,
        output_dir: Path = config.OUTPUTS_DIR,
        model_id: str = config.SD3_INPAINT_MODEL_ID,
        device: str = "cuda",
        dtype: torch.dtype = torch.float16,
        num_inference_steps: int = config.NUM_INFERENCE_STEPS,
        guidance_scale: float = config.GUIDANCE_SCALE,
        strength: float = config.EDIT_STRENGTH,
    ):
        """Initialize the SD3 inpainting editor.

        Args:
            output_dir: Directory the edited images are saved to.
            model_id: HuggingFace model ID for SD3.
            device: Device to run inference on.
            dtype: Torch dtype for model weights.
            num_inference_steps: Number of denoising steps.
            guidance_scale: Classifier-free guidance scale.
            strength: How far the masked region may drift from the original
                (0 keeps it, 1 repaints it completely).
        """
        self.output_dir = Path(output_dir)
        self.model_id = model_id
        self.device = device
        self.dtype = dtype
        self.num_inference_steps = num_inference_steps
        self.guidance_scale = guidance_scale
        self.strength = strength
        self._pipeline: Optional[StableDiffusion3InpaintPipeline] = None
        self._lock = threading.Lock()

    @property
    def pipeline(self) -> StableDiffusion3InpaintPipeline:
        """Lazy-load the pipeline on first use."""
        if self._pipeline is None:
            self._pipeline = StableDiffusion3InpaintPipeline.from_pretrained(
                self.model_id,
                torch_dtype=self.dtype,
            )
            self._pipeline.to(self.device)
            self._pipeline.enable_attention_slicing()
        return self._pipeline

    @staticmethod
    def inpaint_mask(mask_path: Path) -> Image.Image:
        """Convert an RGBA edit mask to the white-means-repaint mask diffusers expects."""
        with Image.open(mask_path) as mask:
            alpha = mask.convert("RGBA").getchannel("A")
        return alpha.point(lambda a: 255 if a > 0 else 0)

    def _edit(self, image: Image.Image, mask: Image.Image, instruction: str) -> Image.Image:
        width, height = image.size
        with self._lock:
            result = self.pipeline(
                prompt=instruction,
                image=image,
                mask_image=mask,
                strength=self.strength,
                num_inference_steps=self.num_inference_steps,
                guidance_scale=self.guidance_scale,
                width=_sd3_dimension(width),
                height=_sd3_dimension(height),
            )
            edited = result.images[0]
            if torch.cuda.is_available():
                torch.cuda.empty_cache()
        if edited.size != (width, height):
            edited = edited.resize((width, height), Image.LANCZOS)
        return edited

    async def edit(self, asset: AssetRef, mask: Path, instruction: str) -> AssetRef:
        """Inpaint the mask's opaque region of ``asset`` following ``instruction``.

        Raises:
            EditFailure: If the edit or saving fails.
        """
        logger.info("Editing %s with mask %s", asset.path, mask)
        try:
            with Image.open(asset.path) as opened:
                image = opened.convert("RGB")
            mask_image = self.inpaint_mask(mask)
            edited = await asyncio.to_thread(self._edit, image, mask_image, instruction)
            path = _save_png(edited, self.output_dir, f"{asset.path.stem}-edit")
        except Exception as exc:
            raise EditFailure(f"image edit failed for {asset.path}: {exc}") from exc

        return AssetRef(
            path=path,
            width=edited.width,
            height=edited.height,
            prompt=instruction,
            seed=asset.seed,
            model=self.model_id,
        )
