"""Tests for concurrent multi-metric evaluation."""

import asyncio

import pytest

from asset_refiner.errors import EvaluationFailure
from asset_refiner.evaluator import MultiMetricEvaluator
from asset_refiner.schemas import AssetRef, Metric, Score

from .conftest import ScriptedScorer


@pytest.fixture
def asset(tmp_path):
    return AssetRef(path=tmp_path / "alice.png", width=100, height=100)


class GatedScorer:
    """Only finishes once every gated scorer has started."""

    def __init__(self, metric, gate, expected):
        self.metric = metric
        self.gate = gate
        self.expected = expected

    async def score(self, asset, context, threshold):
        self.gate["started"] += 1
        if self.gate["started"] == self.expected:
            self.gate["event"].set()
        await self.gate["event"].wait()
        return Score(value=0.99)


class FailingScorer:
    def __init__(self, metric, exc):
        self.metric = metric
        self.exc = exc

    async def score(self, asset, context, threshold):
        raise self.exc


class SlowScorer:
    def __init__(self, metric, delay=10.0):
        self.metric = metric
        self.delay = delay
        self.cancelled = False

    async def score(self, asset, context, threshold):
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return Score(value=0.99)


class RawScorer:
    def __init__(self, metric, payload):
        self.metric = metric
        self.payload = payload

    async def score(self, asset, context, threshold):
        return self.payload


@pytest.mark.asyncio
async def test_results_follow_the_requested_metric_order(asset, character_context):
    evaluator = MultiMetricEvaluator(
        {
            Metric.CHARACTER: ScriptedScorer(Metric.CHARACTER, [0.97]),
            Metric.POSE: ScriptedScorer(Metric.POSE, [0.93]),
            Metric.STYLE: ScriptedScorer(Metric.STYLE, [0.99]),
        }
    )

    results = await evaluator.evaluate(asset, character_context, 0.95)

    assert [r.metric for r in results] == [Metric.CHARACTER, Metric.POSE, Metric.STYLE]
    assert [r.score.value for r in results] == [0.97, 0.93, 0.99]
    assert results[1].score.reasons
    assert not results[0].score.reasons


@pytest.mark.asyncio
async def test_threshold_is_passed_to_every_metric(asset, character_context):
    scorers = {m: ScriptedScorer(m, [0.99]) for m in (Metric.CHARACTER, Metric.POSE, Metric.STYLE)}

    await MultiMetricEvaluator(scorers).evaluate(asset, character_context, 0.9)

    for scorer in scorers.values():
        assert scorer.calls == [(asset, 0.9)]


@pytest.mark.asyncio
async def test_explicit_metrics_override_the_context(asset, character_context):
    scorers = {m: ScriptedScorer(m, [0.99]) for m in Metric}

    results = await MultiMetricEvaluator(scorers).evaluate(
        asset, character_context, 0.95, metrics=[Metric.SHOT]
    )

    assert [r.metric for r in results] == [Metric.SHOT]
    assert not scorers[Metric.CHARACTER].calls


@pytest.mark.asyncio
async def test_metrics_are_scored_concurrently(asset, character_context):
    gate = {"started": 0, "event": asyncio.Event()}
    metrics = [Metric.CHARACTER, Metric.POSE, Metric.STYLE]
    evaluator = MultiMetricEvaluator({m: GatedScorer(m, gate, len(metrics)) for m in metrics}, timeout=2)

    results = await evaluator.evaluate(asset, character_context, 0.95)

    assert len(results) == 3
    assert gate["started"] == 3


@pytest.mark.asyncio
async def test_a_failing_metric_aborts_the_whole_pass(asset, character_context):
    slow = SlowScorer(Metric.STYLE)
    boom = RuntimeError("vision backend down")
    evaluator = MultiMetricEvaluator(
        {
            Metric.CHARACTER: ScriptedScorer(Metric.CHARACTER, [0.99]),
            Metric.POSE: FailingScorer(Metric.POSE, boom),
            Metric.STYLE: slow,
        }
    )

    with pytest.raises(EvaluationFailure) as excinfo:
        await evaluator.evaluate(asset, character_context, 0.95)

    assert excinfo.value.metric is Metric.POSE
    assert excinfo.value.cause is boom
    assert slow.cancelled


@pytest.mark.asyncio
async def test_timeouts_become_evaluation_failures(asset, character_context):
    evaluator = MultiMetricEvaluator({Metric.STYLE: SlowScorer(Metric.STYLE, delay=5)}, timeout=0.05)

    with pytest.raises(EvaluationFailure) as excinfo:
        await evaluator.evaluate(asset, character_context, 0.95, metrics=[Metric.STYLE])

    assert excinfo.value.metric is Metric.STYLE
    assert isinstance(excinfo.value.cause, TimeoutError)


@pytest.mark.asyncio
async def test_missing_scorer_is_an_evaluation_failure(asset, character_context):
    evaluator = MultiMetricEvaluator({Metric.CHARACTER: ScriptedScorer(Metric.CHARACTER, [0.99])})

    with pytest.raises(EvaluationFailure) as excinfo:
        await evaluator.evaluate(asset, character_context, 0.95)

    assert excinfo.value.metric in (Metric.POSE, Metric.STYLE)


@pytest.mark.asyncio
async def test_raw_payloads_are_validated(asset, character_context):
    payload = {
        "score": 0.8,
        "reasons": [{"reason": "mole on the wrong side", "bbox": {"x": 1.6, "y": 2, "w": 3, "h": 4}}],
    }
    evaluator = MultiMetricEvaluator({Metric.CHARACTER: RawScorer(Metric.CHARACTER, payload)})

    [result] = await evaluator.evaluate(asset, character_context, 0.95, metrics=[Metric.CHARACTER])

    assert result.score.value == 0.8
    assert result.score.reasons[0].text == "mole on the wrong side"
    assert result.score.reasons[0].bbox.x == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{"score": 1.5}, {"score": -0.1}, {"reasons": []}, "not a score"])
async def test_out_of_range_scores_are_rejected(asset, character_context, payload):
    evaluator = MultiMetricEvaluator({Metric.CHARACTER: RawScorer(Metric.CHARACTER, payload)})

    with pytest.raises(EvaluationFailure):
        await evaluator.evaluate(asset, character_context, 0.95, metrics=[Metric.CHARACTER])


@pytest.mark.asyncio
async def test_empty_metric_list_is_rejected(asset, character_context):
    with pytest.raises(ValueError):
        await MultiMetricEvaluator({}).evaluate(asset, character_context, 0.95, metrics=[])
