"""Turns per-metric scores into the next action of the loop."""

import logging
from statistics import fmean
from typing import Sequence

import config

from .geometry import clamp, expand, full_frame, union
from .schemas import (
    BoundingBox,
    Decision,
    Fix,
    MetricResult,
    Proceed,
    Reason,
    Redo,
    RefinementThresholds,
)

logger = logging.getLogger(__name__)


def merge_defects(reasons: Sequence[Reason], margin: int, width: int, height: int) -> BoundingBox:
    """Merge every defect into one padded region inside the asset.

    A single edit over the merged region keeps the correction coherent instead
    of stacking several partial edits that drift from each other.
    """
    region = union(reason.bbox for reason in reasons)
    return clamp(expand(region, margin), width, height)


def aggregate_score(results: Sequence[MetricResult]) -> float:
    """Arithmetic mean of all metric values."""
    if not results:
        raise ValueError("cannot aggregate an empty set of metric results")
    return fmean(result.score.value for result in results)


def _describe_failure(result: MetricResult) -> str:
    return f"{result.metric.value} scored {result.score.value:.2f} without a stated reason"


class DecisionPolicy:
    """Chooses between proceeding, fixing a region, or regenerating."""

    def __init__(self, margin: int = config.MASK_MARGIN):
        """Initialize the policy.

        Args:
            margin: Pixels added around the merged defect region.
        """
        self.margin = margin

    def decide(
        self,
        results: Sequence[MetricResult],
        thresholds: RefinementThresholds,
        width: int,
        height: int,
    ) -> Decision:
        """Decide what to do with a scored candidate.

        Any metric below ``regen_threshold`` forces a ``Redo`` no matter how
        well the others scored. Otherwise every metric below ``fix_threshold``
        contributes its reasons to one ``Fix``. If nothing fails, ``Proceed``.

        Args:
            results: Metric results of the candidate.
            thresholds: Thresholds of the current run.
            width: Candidate width, used to bound the fix region.
            height: Candidate height, used to bound the fix region.
        """
        if not results:
            raise ValueError("cannot decide without metric results")

        failing_redo = [r for r in results if r.score.value < thresholds.regen_threshold]
        if failing_redo:
            texts = []
            for result in failing_redo:
                texts.extend(reason.text for reason in result.score.reasons)
                if not result.score.reasons:
                    texts.append(_describe_failure(result))
            decision = Redo(
                reason=". ".join(texts),
                metrics=[r.metric for r in failing_redo],
            )
            logger.info("Redo: %s", decision.reason)
            return decision

        failing_fix = [r for r in results if r.score.value < thresholds.fix_threshold]
        if not failing_fix:
            return Proceed()

        reasons = [reason for result in failing_fix for reason in result.score.reasons]
        if reasons:
            region = merge_defects(reasons, self.margin, width, height)
        else:
            # nothing localized: patch the whole asset rather than pass it
            region = full_frame(width, height)
            reasons = [Reason(text=_describe_failure(r), bbox=region) for r in failing_fix]

        silent = [r.metric.value for r in failing_fix if not r.score.reasons]
        if silent:
            logger.warning("Metrics below threshold without reasons: %s", ", ".join(silent))

        logger.info("Fix %d defect(s) in region %s", len(reasons), region)
        return Fix(
            merged_region=region,
            reasons=reasons,
            metrics=[r.metric for r in failing_fix],
        )
