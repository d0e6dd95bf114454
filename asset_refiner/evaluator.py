"""Concurrent multi-metric evaluation of a candidate asset."""

import asyncio
import logging
from typing import Mapping, Optional, Sequence

import config

from .errors import EvaluationFailure
from .schemas import AssetRef, Metric, MetricResult, RefinementContext, Score
from .scoring import VisualScoringService

logger = logging.getLogger(__name__)


class MultiMetricEvaluator:
    """Runs every requested metric against one candidate at the same time."""

    def __init__(
        self,
        scorers: Mapping[Metric, VisualScoringService],
        timeout: Optional[float] = config.SCORING_TIMEOUT,
    ):
        """Initialize the evaluator.

        Args:
            scorers: Scoring service for each supported metric.
            timeout: Seconds allowed per metric call. None disables the limit.
        """
        self.scorers = dict(scorers)
        self.timeout = timeout

    async def _score_one(
        self,
        metric: Metric,
        asset: AssetRef,
        context: RefinementContext,
        threshold: float,
    ) -> MetricResult:
        scorer = self.scorers.get(metric)
        if scorer is None:
            raise EvaluationFailure(metric, LookupError(f"no scorer configured for {metric.value}"))

        try:
            raw = await asyncio.wait_for(scorer.score(asset, context, threshold), self.timeout)
            score = raw if isinstance(raw, Score) else Score.model_validate(raw)
            if not 0.0 <= score.value <= 1.0:
                raise ValueError(f"score {score.value} outside [0, 1]")
        except asyncio.TimeoutError as exc:
            raise EvaluationFailure(metric, TimeoutError(f"scoring timed out after {self.timeout}s")) from exc
        except Exception as exc:
            raise EvaluationFailure(metric, exc) from exc

        return MetricResult(metric=metric, score=score)

    async def evaluate(
        self,
        asset: AssetRef,
        context: RefinementContext,
        threshold: float,
        metrics: Optional[Sequence[Metric]] = None,
    ) -> list[MetricResult]:
        """Score an asset on every metric concurrently.

        Args:
            asset: Candidate to evaluate. Never modified.
            context: Description, traits, pose, style and references.
            threshold: Acceptance threshold applied to every metric.
            metrics: Metrics to run. Uses the context's metrics if None.

        Returns:
            One result per metric, in the requested order.

        Raises:
            EvaluationFailure: As soon as any metric fails. Remaining calls are
                cancelled; partial results are never returned.
        """
        metrics = list(metrics) if metrics is not None else context.resolved_metrics()
        if not metrics:
            raise ValueError("at least one metric is required")

        tasks = [
            asyncio.ensure_future(self._score_one(metric, asset, context, threshold))
            for metric in metrics
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        for result in results:
            logger.debug("%s: %.3f (%d reasons)", result.metric.value, result.score.value, len(result.score.reasons))
        return list(results)
