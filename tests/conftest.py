"""Shared fakes for the refinement tests."""

import asyncio
from pathlib import Path

import pytest

from asset_refiner.schemas import (
    AssetKind,
    AssetRef,
    BoundingBox,
    Metric,
    MetricResult,
    Reason,
    RefinementContext,
    RefinementThresholds,
    Score,
)

DEFECT_BOX = BoundingBox(x=10, y=10, w=20, h=20)


def make_score(value: float, *boxes: BoundingBox, text: str = "defect") -> Score:
    """Score with one reason per box."""
    return Score(
        value=value,
        reasons=[Reason(text=f"{text} {i}", bbox=box) for i, box in enumerate(boxes)],
    )


def make_result(metric: Metric, value: float, *boxes: BoundingBox, text: str = "defect") -> MetricResult:
    return MetricResult(metric=metric, score=make_score(value, *boxes, text=text))


class FakeGenerator:
    """Writes a placeholder file and returns a new 100x100 asset reference on every call."""

    def __init__(self, root: Path, size: tuple[int, int] = (100, 100), delay: float = 0.0):
        self.root = root
        self.size = size
        self.delay = delay
        self.calls: list[RefinementContext] = []

    async def create(self, context: RefinementContext) -> AssetRef:
        self.calls.append(context)
        n = len(self.calls)
        if self.delay:
            await asyncio.sleep(self.delay)
        path = self.root / f"created-{n}.png"
        path.write_bytes(f"created {n}".encode())
        width, height = self.size
        return AssetRef(path=path, width=width, height=height)


class FakeEditor:
    def __init__(self, root: Path):
        self.root = root
        self.calls: list[tuple[AssetRef, Path, str]] = []

    async def edit(self, asset: AssetRef, mask: Path, instruction: str) -> AssetRef:
        self.calls.append((asset, mask, instruction))
        path = self.root / f"edited-{len(self.calls)}.png"
        path.write_bytes(f"edited {len(self.calls)}".encode())
        return AssetRef(
            path=path,
            width=asset.width,
            height=asset.height,
        )


class FakeInstructions:
    def __init__(self):
        self.calls: list[list[Reason]] = []

    async def synthesize(self, reasons) -> str:
        self.calls.append(list(reasons))
        return "fix: " + "; ".join(r.text for r in reasons)


class ScriptedScorer:
    """Replays one value per call; the last value repeats once the script runs out.

    Values below the threshold get a reason located at ``DEFECT_BOX``.
    """

    def __init__(self, metric: Metric, values):
        self.metric = metric
        self.values = list(values)
        self.calls: list[tuple[AssetRef, float]] = []

    async def score(self, asset: AssetRef, context: RefinementContext, threshold: float) -> Score:
        self.calls.append((asset, threshold))
        value = self.values[min(len(self.calls), len(self.values)) - 1]
        if isinstance(value, Score):
            return value
        if value < threshold:
            return make_score(value, DEFECT_BOX, text=f"{self.metric.value} defect")
        return Score(value=value)


@pytest.fixture
def thresholds() -> RefinementThresholds:
    return RefinementThresholds(fix_threshold=0.95, regen_threshold=0.70)


@pytest.fixture
def character_context() -> RefinementContext:
    return RefinementContext(
        kind=AssetKind.CHARACTER,
        name="Alice",
        description="A tall blond woman with a mole on the right side of her chin",
        characteristics=["blue piercing eyes", "mole on the right side of the chin"],
        situational=["white shirt"],
        pose="Full body frontal, neutral pose",
        style="Graphic Novel",
    )
