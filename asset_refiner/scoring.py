"""Vision-model scorers, one per metric, using LangChain."""

import base64
import logging
from io import BytesIO
from pathlib import Path
from typing import Protocol, Union

from langchain_core.messages import HumanMessage, SystemMessage
from PIL import Image, ImageOps
from pydantic import ValidationError

from .errors import ScoringFailure
from .llm import Provider, get_vision_model
from .schemas import AssetRef, Metric, RefinementContext, Score

logger = logging.getLogger(__name__)


SCORING_SYSTEM_PROMPT = """You are an expert image scoring assistant for illustrated characters and locations.
{task}

Important grading rubric:
- 1.0: perfect match
- 0.9-1.0: clearly a match with subtle defects
- 0.8-0.9: minor variations
- 0.5-0.7: noticeable inconsistencies
- 0.1-0.4: major drift
- 0.0: completely different or unrecognizable

Return a single "score" between 0 and 1.
Only if the score is lower than {threshold}, add "reasons": one entry per defect, each with a
"reason" describing it and a "bbox" that completely covers it.

Bounding box format: x, y, w, h in pixels of the image being evaluated, top-left origin, y axis pointing down.
When locating body parts, account for the subject's orientation (a character facing the camera has its
right hand on the left side of the picture)."""


class VisualScoringService(Protocol):
    """Scores one asset against its context for a single metric."""

    metric: Metric

    async def score(self, asset: AssetRef, context: RefinementContext, threshold: float) -> Score:
        ...


def image_to_base64(image: Union[Image.Image, Path, str]) -> str:
    """Encode an image as base64 PNG, applying its EXIF orientation first."""
    if not isinstance(image, Image.Image):
        with Image.open(image) as opened:
            image = ImageOps.exif_transpose(opened)
            image.load()

    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("utf-8")


def _image_part(image: Union[Image.Image, Path, str]) -> dict:
    return {
        "type": "image_url",
        "image_url": {"url": f"data:image/png;base64,{image_to_base64(image)}"},
    }


def _bullets(items: list[str]) -> str:
    return "\n".join(f"- {item}" for item in items) or "- None"


class VisionScorer:
    """Base class for metric scorers backed by a vision-capable chat model.

    Subclasses set ``metric`` and ``task`` and describe which parts of the
    context the model has to judge in ``subject``.
    """

    metric: Metric
    task: str = ""

    def __init__(self, provider: Provider | None = None, model=None):
        """Initialize the scorer.

        Args:
            provider: LLM provider to use. Uses config default if None.
            model: Pre-built structured-output model, mostly for tests.
        """
        self.provider = provider
        self._model = model

    @property
    def model(self):
        """Lazy-load the model with structured output."""
        if self._model is None:
            base_model = get_vision_model(provider=self.provider)
            self._model = base_model.with_structured_output(Score)
        return self._model

    def subject(self, context: RefinementContext) -> str:
        raise NotImplementedError

    def build_messages(self, asset: AssetRef, context: RefinementContext, threshold: float) -> list:
        content = [
            {
                "type": "text",
                "text": f"""{self.subject(context)}

## Image to evaluate (width: {asset.width}px, height: {asset.height}px)""",
            },
            _image_part(asset.path),
        ]
        if context.references:
            content.append({"type": "text", "text": "\n## Reference images"})
            for i, reference in enumerate(context.references):
                content.append({"type": "text", "text": f"\n### Reference image {i}"})
                content.append(_image_part(reference))

        return [
            SystemMessage(content=SCORING_SYSTEM_PROMPT.format(task=self.task, threshold=threshold)),
            HumanMessage(content=content),
        ]

    async def score(self, asset: AssetRef, context: RefinementContext, threshold: float) -> Score:
        """Score an asset for this scorer's metric.

        Reasons are only kept when the score falls below ``threshold``.

        Raises:
            ScoringFailure: If the model call fails or returns malformed data.
        """
        messages = self.build_messages(asset, context, threshold)
        try:
            result = await self.model.ainvoke(messages)
        except Exception as exc:
            raise ScoringFailure(f"{self.metric.value} scoring call failed: {exc}") from exc

        try:
            score = result if isinstance(result, Score) else Score.model_validate(result)
        except ValidationError as exc:
            raise ScoringFailure(f"{self.metric.value} scorer returned malformed data: {exc}") from exc

        if score.value >= threshold and score.reasons:
            score = Score(value=score.value, reasons=[])

        logger.debug("%s scored %.3f for %s", self.metric.value, score.value, asset.path)
        return score


class CharacterScorer(VisionScorer):
    metric = Metric.CHARACTER
    task = (
        "You compare a character image against its physical description and reference images. "
        "Judge likeness: face, hair, body type, clothing and every defining characteristic."
    )

    def subject(self, context: RefinementContext) -> str:
        return f"""## Character: {context.name}
{context.description}

## Defining characteristics
{_bullets(context.characteristics)}

## Situational characteristics
{_bullets(context.situational)}"""


class PoseScorer(VisionScorer):
    metric = Metric.POSE
    task = (
        "You match a character's position against a pose description, paying extra attention to "
        "anatomy: limb count and placement, hands, and whether the pose expresses the intended action."
    )

    def subject(self, context: RefinementContext) -> str:
        return f"""## Character pose description
{context.pose or "Full body frontal, neutral pose"}"""


class StyleScorer(VisionScorer):
    metric = Metric.STYLE
    task = (
        "You judge whether an image adheres to a requested visual style: line work, palette, "
        "shading, rendering technique and mood."
    )

    def subject(self, context: RefinementContext) -> str:
        mood = f"\n\n## Mood\n{context.mood}" if context.mood else ""
        return f"""## Requested style
{context.style}{mood}"""


class LocationScorer(VisionScorer):
    metric = Metric.LOCATION
    task = (
        "You compare a location image against its description: architecture, landscape, props, "
        "lighting and every defining characteristic of the place."
    )

    def subject(self, context: RefinementContext) -> str:
        return f"""## Location: {context.name}
{context.description}

## Defining characteristics
{_bullets(context.characteristics)}

## Situational characteristics
{_bullets(context.situational)}"""


class ShotScorer(VisionScorer):
    metric = Metric.SHOT
    task = (
        "You judge camera work: shot type, framing, camera angle and composition relative to the "
        "requested shot."
    )

    def subject(self, context: RefinementContext) -> str:
        return f"""## Requested shot
{context.pose or context.description}"""


SCORERS: dict[Metric, type[VisionScorer]] = {
    Metric.CHARACTER: CharacterScorer,
    Metric.POSE: PoseScorer,
    Metric.STYLE: StyleScorer,
    Metric.LOCATION: LocationScorer,
    Metric.SHOT: ShotScorer,
}


def default_scorers(provider: Provider | None = None) -> dict[Metric, VisualScoringService]:
    """One vision scorer per metric, sharing the configured provider."""
    return {metric: scorer(provider=provider) for metric, scorer in SCORERS.items()}
