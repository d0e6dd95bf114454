"""Tests for schema invariants."""

import pytest
from pydantic import ValidationError

from asset_refiner.errors import InvalidArgument
from asset_refiner.schemas import (
    Action,
    AssetKind,
    AssetRef,
    BoundingBox,
    Fix,
    IterationRecord,
    Metric,
    MetricResult,
    Proceed,
    Reason,
    RefinementContext,
    RefinementState,
    RefinementThresholds,
    Score,
)


@pytest.mark.parametrize(
    "fix,regen",
    [(0.95, 0.70), (0.5, 0.5), (1.0, 0.0), (0.0, 0.0)],
)
def test_valid_thresholds(fix, regen):
    thresholds = RefinementThresholds(fix_threshold=fix, regen_threshold=regen)
    assert thresholds.regen_threshold <= thresholds.fix_threshold


@pytest.mark.parametrize(
    "fix,regen",
    [(0.70, 0.95), (1.2, 0.5), (0.9, -0.1), (0.5, 0.5000001)],
)
def test_invalid_thresholds_raise_invalid_argument(fix, regen):
    with pytest.raises(InvalidArgument):
        RefinementThresholds(fix_threshold=fix, regen_threshold=regen)


@pytest.mark.parametrize(
    "build",
    [
        lambda: RefinementThresholds.model_validate({"fix_threshold": 0.7, "regen_threshold": 0.95}),
        lambda: RefinementThresholds.model_validate({"fix_threshold": 0.9}),
        lambda: RefinementThresholds.model_validate_json('{"fix_threshold": 1.5, "regen_threshold": 0.5}'),
    ],
)
def test_every_construction_path_raises_invalid_argument(build):
    with pytest.raises(InvalidArgument):
        build()


def test_thresholds_validate_from_payloads():
    thresholds = RefinementThresholds.model_validate({"fix_threshold": 0.9, "regen_threshold": 0.6})
    assert thresholds == RefinementThresholds(fix_threshold=0.9, regen_threshold=0.6)


def test_invalid_argument_is_a_value_error():
    with pytest.raises(ValueError):
        RefinementThresholds(fix_threshold=0.1, regen_threshold=0.9)


def test_thresholds_are_immutable(thresholds):
    with pytest.raises(ValidationError):
        thresholds.fix_threshold = 0.5


def test_score_accepts_vision_model_payloads():
    score = Score.model_validate(
        {"score": 0.61, "reasons": [{"reason": "third leg", "bbox": {"x": 67, "y": 508, "h": 132, "w": 134}}]}
    )

    assert score.value == 0.61
    assert score.reasons == [Reason(text="third leg", bbox=BoundingBox(x=67, y=508, w=134, h=132))]


@pytest.mark.parametrize("value", [-0.01, 1.01])
def test_score_must_be_a_probability(value):
    with pytest.raises(ValidationError):
        Score(value=value)


def test_bounding_box_rounds_fractional_pixels():
    assert BoundingBox(x=1.4, y=1.6, w=10.5, h=3.0) == BoundingBox(x=1, y=2, w=10, h=3)


def test_bounding_box_rejects_negative_size():
    with pytest.raises(ValidationError):
        BoundingBox(x=0, y=0, w=-1, h=5)


def test_context_defaults_metrics_by_kind():
    character = RefinementContext(name="Alice", description="tall")
    location = RefinementContext(kind=AssetKind.LOCATION, name="Alley", description="wet")

    assert character.resolved_metrics() == [Metric.CHARACTER, Metric.POSE, Metric.STYLE]
    assert location.resolved_metrics() == [Metric.LOCATION, Metric.STYLE]


def test_context_metrics_override_defaults():
    context = RefinementContext(name="Alice", description="tall", metrics=[Metric.SHOT])
    assert context.resolved_metrics() == [Metric.SHOT]


def _record(index: int, value: float) -> IterationRecord:
    return IterationRecord(
        index=index,
        action=Action.CREATE,
        asset=AssetRef(path=f"asset-{index}.png", width=10, height=10),
        metric_results=[MetricResult(metric=Metric.STYLE, score=Score(value=value))],
        decision=Proceed(),
        aggregate_score=value,
    )


def test_state_is_append_only_and_ordered(thresholds):
    state = RefinementState(thresholds)
    state.append(_record(1, 0.5))

    with pytest.raises(ValueError):
        state.append(_record(3, 0.5))

    assert state.index == 1
    assert state.current_asset == state.last.asset


def test_state_best_prefers_the_earliest_of_equal_scores(thresholds):
    state = RefinementState(thresholds)
    for index, value in enumerate([0.6, 0.8, 0.8, 0.7], start=1):
        state.append(_record(index, value))

    assert state.best().index == 2


def test_state_history_cannot_be_mutated(thresholds):
    state = RefinementState(thresholds)
    state.append(_record(1, 0.5))

    history = state.history
    assert isinstance(history, tuple)
    with pytest.raises(ValidationError):
        history[0].aggregate_score = 1.0


def test_decisions_round_trip_through_their_tag():
    fix = Fix(
        merged_region=BoundingBox(x=0, y=0, w=5, h=5),
        reasons=[Reason(text="smudge", bbox=BoundingBox(x=1, y=1, w=2, h=2))],
    )
    record = _record(1, 0.9).model_copy(update={"decision": fix})

    restored = IterationRecord.model_validate(record.model_dump(mode="json"))

    assert isinstance(restored.decision, Fix)
    assert restored.decision.reasons[0].text == "smudge"
