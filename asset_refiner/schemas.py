"""Pydantic schemas for structured data flow in the refinement loop."""

from enum import Enum
from pathlib import Path
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import InvalidArgument


class Metric(str, Enum):
    """Independently scored quality dimensions."""

    CHARACTER = "character"
    POSE = "pose"
    STYLE = "style"
    LOCATION = "location"
    SHOT = "shot"


class Action(str, Enum):
    """How a candidate asset was produced in an iteration."""

    CREATE = "create"
    EDIT = "edit"
    EVALUATE = "evaluate"


class AssetKind(str, Enum):
    """Kinds of visual asset the loop knows how to refine."""

    CHARACTER = "character"
    LOCATION = "location"


DEFAULT_METRICS: dict[AssetKind, tuple[Metric, ...]] = {
    AssetKind.CHARACTER: (Metric.CHARACTER, Metric.POSE, Metric.STYLE),
    AssetKind.LOCATION: (Metric.LOCATION, Metric.STYLE),
}


class BoundingBox(BaseModel):
    """Pixel rectangle, top-left origin, y increasing downward."""

    model_config = ConfigDict(frozen=True)

    x: int = Field(..., description="leftmost x coordinate in pixels")
    y: int = Field(..., description="upmost y coordinate in pixels")
    w: int = Field(..., ge=0, description="width in pixels")
    h: int = Field(..., ge=0, description="height in pixels")

    @field_validator("x", "y", "w", "h", mode="before")
    @classmethod
    def _round_pixels(cls, value):
        # vision models regularly answer with fractional pixels
        if isinstance(value, float):
            return int(round(value))
        return value

    @property
    def right(self) -> int:
        return self.x + self.w

    @property
    def bottom(self) -> int:
        return self.y + self.h

    def contains(self, other: "BoundingBox") -> bool:
        """True if ``other`` lies fully inside this box."""
        return (
            self.x <= other.x
            and self.y <= other.y
            and self.right >= other.right
            and self.bottom >= other.bottom
        )


class Reason(BaseModel):
    """A localized explanation for a sub-threshold score."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    text: str = Field(
        ...,
        alias="reason",
        description="a specific reason for a lower score",
    )
    bbox: BoundingBox = Field(
        ...,
        description="the bounding box of the defect",
    )


class Score(BaseModel):
    """Outcome of one metric evaluation on one candidate asset."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    value: float = Field(
        ...,
        alias="score",
        ge=0.0,
        le=1.0,
        description="the global score, 1 is better than 0",
    )
    reasons: list[Reason] = Field(
        default_factory=list,
        description="reasons and bounding boxes for a score below the threshold",
    )


class MetricResult(BaseModel):
    """One scored metric of one iteration."""

    model_config = ConfigDict(frozen=True)

    metric: Metric
    score: Score


class RefinementThresholds(BaseModel):
    """Acceptance thresholds for one refinement run.

    ``regen_threshold <= fix_threshold`` must hold; anything scoring below
    ``regen_threshold`` forces a full regeneration, anything below
    ``fix_threshold`` gets a localized fix.
    """

    model_config = ConfigDict(frozen=True)

    fix_threshold: float = Field(..., ge=0.0, le=1.0)
    regen_threshold: float = Field(..., ge=0.0, le=1.0)

    # InvalidArgument is a ValueError, which pydantic would fold back into a
    # ValidationError if raised from a validator, so every entry point converts.
    def __init__(self, **data):
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise InvalidArgument(f"invalid refinement thresholds: {exc}") from exc

    @classmethod
    def model_validate(cls, obj, **kwargs) -> "RefinementThresholds":
        try:
            return super().model_validate(obj, **kwargs)
        except ValidationError as exc:
            raise InvalidArgument(f"invalid refinement thresholds: {exc}") from exc

    @classmethod
    def model_validate_json(cls, json_data, **kwargs) -> "RefinementThresholds":
        try:
            return super().model_validate_json(json_data, **kwargs)
        except ValidationError as exc:
            raise InvalidArgument(f"invalid refinement thresholds: {exc}") from exc

    @model_validator(mode="after")
    def _check_order(self) -> "RefinementThresholds":
        if self.regen_threshold > self.fix_threshold:
            raise ValueError(
                f"regen_threshold ({self.regen_threshold}) must not exceed "
                f"fix_threshold ({self.fix_threshold})"
            )
        return self


class Proceed(BaseModel):
    """All metrics passed the fix threshold."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["proceed"] = "proceed"


class Fix(BaseModel):
    """Localized defects to correct inside one merged region."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["fix"] = "fix"
    merged_region: BoundingBox
    reasons: list[Reason]
    metrics: list[Metric] = Field(default_factory=list)


class Redo(BaseModel):
    """At least one metric is beyond repair; regenerate from scratch."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["redo"] = "redo"
    reason: str
    metrics: list[Metric] = Field(default_factory=list)


class GiveUp(BaseModel):
    """Iteration budget exhausted without a Proceed decision."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["give_up"] = "give_up"
    best_index: int


Decision = Annotated[Union[Proceed, Fix, Redo, GiveUp], Field(discriminator="kind")]


class AssetRef(BaseModel):
    """Opaque reference to an image produced by a collaborator."""

    model_config = ConfigDict(frozen=True)

    path: Path
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    prompt: Optional[str] = None
    seed: Optional[int] = None
    model: Optional[str] = None


class RefinementContext(BaseModel):
    """Everything a collaborator needs to know about the requested asset."""

    kind: AssetKind = AssetKind.CHARACTER
    name: str = Field(..., description="name of the character or location")
    description: str = Field(..., description="visual description of the subject")
    characteristics: list[str] = Field(
        default_factory=list,
        description="defining traits that must always be present",
    )
    situational: list[str] = Field(
        default_factory=list,
        description="traits specific to this depiction",
    )
    pose: Optional[str] = Field(
        default=None,
        description="pose of the character, if any",
    )
    style: str = Field(default="Graphic Novel", description="visual style")
    mood: Optional[str] = None
    references: list[Path] = Field(
        default_factory=list,
        description="reference images to stay consistent with",
    )
    metrics: list[Metric] = Field(
        default_factory=list,
        description="metrics to evaluate; empty means the defaults for the kind",
    )

    def resolved_metrics(self) -> list[Metric]:
        return list(self.metrics) if self.metrics else list(DEFAULT_METRICS[self.kind])


class IterationRecord(BaseModel):
    """What happened in one iteration of the loop."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=1, description="one-based iteration number")
    action: Action
    asset: AssetRef
    metric_results: list[MetricResult]
    decision: Decision
    aggregate_score: float = Field(..., ge=0.0, le=1.0)
    mask_path: Optional[Path] = None
    instruction: Optional[str] = None


class RefinementState:
    """Append-only history of one refinement run."""

    def __init__(self, thresholds: RefinementThresholds, initial_asset: Optional[AssetRef] = None):
        self.thresholds = thresholds
        self._records: list[IterationRecord] = []
        # an existing asset is judged before anything new is produced
        self.current_asset: Optional[AssetRef] = initial_asset
        self.cancelled = False

    @property
    def index(self) -> int:
        return len(self._records)

    @property
    def history(self) -> tuple[IterationRecord, ...]:
        return tuple(self._records)

    @property
    def last(self) -> Optional[IterationRecord]:
        return self._records[-1] if self._records else None

    def append(self, record: IterationRecord) -> None:
        if record.index != self.index + 1:
            raise ValueError(f"expected iteration {self.index + 1}, got {record.index}")
        self._records.append(record)
        self.current_asset = record.asset

    def best(self) -> IterationRecord:
        """Highest aggregate score over the whole history; earliest wins ties."""
        if not self._records:
            raise ValueError("no iterations recorded")
        return max(self._records, key=lambda r: r.aggregate_score)


class RefinementResult(BaseModel):
    """Final result of a refinement run."""

    asset: AssetRef
    score: float = Field(..., description="aggregate score of the returned asset")
    metric_results: list[MetricResult]
    iterations: int = Field(..., description="number of iterations performed")
    converged: bool
    cancelled: bool = False
    stop_reason: Literal["proceed", "give_up", "cancelled"]
    decision: Decision
    best_iteration: int
    final_path: Optional[Path] = Field(
        default=None,
        description="copy of the returned asset marked as final",
    )
    history: list[IterationRecord] = Field(default_factory=list)
