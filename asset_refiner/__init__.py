"""Closed-loop refinement of generated visual assets."""

from .errors import (
    EditFailure,
    EvaluationFailure,
    InvalidArgument,
    IOFailure,
    IterationFailure,
    RefinementCancelled,
    RefinementError,
    ScoringFailure,
    SynthesisFailure,
)
from .evaluator import MultiMetricEvaluator
from .files import mark_final, write_exclusive
from .geometry import clamp, expand, union
from .instructions import LLMInstructionSynthesizer
from .masks import MaskGenerator
from .pipeline import RefinementOrchestrator, refine_asset
from .policy import DecisionPolicy, aggregate_score, merge_defects
from .schemas import (
    Action,
    AssetKind,
    AssetRef,
    BoundingBox,
    Fix,
    GiveUp,
    IterationRecord,
    Metric,
    MetricResult,
    Proceed,
    Reason,
    Redo,
    RefinementContext,
    RefinementResult,
    RefinementThresholds,
    Score,
)
from .scoring import VisionScorer, default_scorers

__all__ = [
    "Action",
    "AssetKind",
    "AssetRef",
    "BoundingBox",
    "DecisionPolicy",
    "EditFailure",
    "EvaluationFailure",
    "Fix",
    "GiveUp",
    "InvalidArgument",
    "IOFailure",
    "IterationFailure",
    "IterationRecord",
    "LLMInstructionSynthesizer",
    "MaskGenerator",
    "Metric",
    "MetricResult",
    "MultiMetricEvaluator",
    "Proceed",
    "Reason",
    "Redo",
    "RefinementCancelled",
    "RefinementContext",
    "RefinementError",
    "RefinementOrchestrator",
    "RefinementResult",
    "RefinementThresholds",
    "Score",
    "ScoringFailure",
    "SynthesisFailure",
    "VisionScorer",
    "aggregate_score",
    "clamp",
    "default_scorers",
    "expand",
    "mark_final",
    "merge_defects",
    "refine_asset",
    "union",
    "write_exclusive",
]
