"""Main refinement loop orchestrator."""

import asyncio
import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, AsyncGenerator, Awaitable, Callable, Optional, TypeVar

import config

from .errors import (
    EditFailure,
    InvalidArgument,
    IOFailure,
    IterationFailure,
    RefinementCancelled,
    RefinementError,
    SynthesisFailure,
)
from .evaluator import MultiMetricEvaluator
from .files import mark_final
from .instructions import EditInstructionSynthesizer, LLMInstructionSynthesizer
from .masks import MaskGenerator
from .policy import DecisionPolicy, aggregate_score
from .schemas import (
    Action,
    AssetRef,
    Fix,
    GiveUp,
    IterationRecord,
    Proceed,
    RefinementContext,
    RefinementResult,
    RefinementState,
    RefinementThresholds,
)
from .scoring import default_scorers

if TYPE_CHECKING:
    from .generator import ImageEditService, ImageSynthesisService

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _call(
    awaitable: Awaitable[T],
    timeout: Optional[float],
    failure: type[RefinementError],
    what: str,
) -> T:
    """Await a collaborator call, mapping timeouts and errors to ``failure``."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except failure:
        raise
    except asyncio.TimeoutError as exc:
        raise failure(f"{what} timed out after {timeout}s") from exc
    except Exception as exc:
        raise failure(f"{what} failed: {exc}") from exc


class RefinementOrchestrator:
    """Drives the generate, evaluate, decide, correct loop for one asset at a time.

    The orchestrator holds no per-run state, so several ``refine`` calls may
    run concurrently on the same instance.
    """

    def __init__(
        self,
        generator: Optional["ImageSynthesisService"] = None,
        editor: Optional["ImageEditService"] = None,
        evaluator: Optional[MultiMetricEvaluator] = None,
        instructions: Optional[EditInstructionSynthesizer] = None,
        policy: Optional[DecisionPolicy] = None,
        output_dir: Path = config.OUTPUTS_DIR,
        synthesis_timeout: Optional[float] = config.SYNTHESIS_TIMEOUT,
        edit_timeout: Optional[float] = config.EDIT_TIMEOUT,
        save_metadata: bool = True,
        finalize: bool = True,
    ):
        """Initialize the orchestrator.

        Args:
            generator: Image synthesis service. Creates the SD3 generator if None.
            editor: Image edit service. Creates the SD3 inpainting editor if None.
            evaluator: Multi-metric evaluator. Uses the vision scorers if None.
            instructions: Edit instruction synthesizer. Creates default if None.
            policy: Decision policy. Creates default if None.
            output_dir: Directory that holds one sub-directory per run.
            synthesis_timeout: Seconds allowed for a create or instruction call.
            edit_timeout: Seconds allowed for an edit call.
            save_metadata: Write iteration and summary JSON files.
            finalize: Copy the returned asset to a ``-final`` file.
        """
        if generator is None or editor is None:
            from .generator import DiffusersImageEditor, DiffusersImageGenerator

            generator = generator or DiffusersImageGenerator(output_dir=output_dir)
            editor = editor or DiffusersImageEditor(output_dir=output_dir)

        self.generator = generator
        self.editor = editor
        self.evaluator = evaluator or MultiMetricEvaluator(default_scorers())
        self.instructions = instructions or LLMInstructionSynthesizer()
        self.policy = policy or DecisionPolicy()
        self.output_dir = Path(output_dir)
        self.synthesis_timeout = synthesis_timeout
        self.edit_timeout = edit_timeout
        self.save_metadata = save_metadata
        self.finalize = finalize

    def _create_run_dir(self) -> Path:
        """Create a unique directory for this run."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        run_dir = self.output_dir / f"run_{timestamp}_{uuid.uuid4().hex[:6]}"
        try:
            run_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise IOFailure(f"could not create run directory {run_dir}: {exc}") from exc
        return run_dir

    def _save_iteration_metadata(self, run_dir: Path, record: IterationRecord) -> None:
        """Save iteration metadata to JSON."""
        if not self.save_metadata:
            return
        metadata_path = run_dir / f"iteration_{record.index:02d}.json"
        try:
            with open(metadata_path, "w") as f:
                json.dump(record.model_dump(mode="json"), f, indent=2)
        except OSError as exc:
            raise IOFailure(f"could not write {metadata_path}: {exc}") from exc

    def _save_summary(self, run_dir: Path, context: RefinementContext, result: RefinementResult) -> None:
        if not self.save_metadata:
            return
        summary = {
            "name": context.name,
            "kind": context.kind.value,
            "total_iterations": result.iterations,
            "stop_reason": result.stop_reason,
            "converged": result.converged,
            "cancelled": result.cancelled,
            "best_iteration": result.best_iteration,
            "best_score": result.score,
            "asset": str(result.asset.path),
            "final_path": str(result.final_path) if result.final_path else None,
            "scores": {r.metric.value: r.score.value for r in result.metric_results},
        }
        summary_path = run_dir / "summary.json"
        try:
            with open(summary_path, "w") as f:
                json.dump(summary, f, indent=2)
        except OSError as exc:
            raise IOFailure(f"could not write {summary_path}: {exc}") from exc

    async def _produce(
        self,
        action: Action,
        context: RefinementContext,
        state: RefinementState,
        masks: MaskGenerator,
    ) -> tuple[AssetRef, Optional[Path], Optional[str]]:
        """Create or edit the next candidate, or hand back the supplied one."""
        if action is Action.EVALUATE:
            return state.current_asset, None, None

        if action is Action.CREATE:
            asset = await _call(
                self.generator.create(context),
                self.synthesis_timeout,
                SynthesisFailure,
                "image synthesis",
            )
            return asset, None, None

        fix = state.last.decision
        current = state.current_asset
        mask_path = await asyncio.to_thread(
            masks.generate,
            fix.merged_region,
            current.width,
            current.height,
            current.path.stem,
        )
        instruction = await _call(
            self.instructions.synthesize(fix.reasons),
            self.synthesis_timeout,
            SynthesisFailure,
            "edit instruction synthesis",
        )
        asset = await _call(
            self.editor.edit(current, mask_path, instruction),
            self.edit_timeout,
            EditFailure,
            "image edit",
        )
        return asset, mask_path, instruction

    async def iterate(
        self,
        context: RefinementContext,
        state: RefinementState,
        max_iterations: int,
        run_dir: Path,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncGenerator[IterationRecord, None]:
        """Run the loop as an async generator, yielding each iteration.

        If ``state`` starts with a current asset, iteration 1 evaluates it
        instead of creating a new one.

        Stops after a Proceed decision, after ``max_iterations`` iterations, or
        when ``cancel_event`` is set between two iterations (``state.cancelled``
        is then True).

        Raises:
            IterationFailure: If anything inside an iteration fails.
        """
        thresholds = state.thresholds
        masks = MaskGenerator(run_dir)

        for index in range(1, max_iterations + 1):
            if cancel_event is not None and cancel_event.is_set():
                state.cancelled = True
                logger.warning("Refinement of '%s' cancelled before iteration %d", context.name, index)
                return

            previous = state.last
            if previous is None:
                action = Action.EVALUATE if state.current_asset is not None else Action.CREATE
            elif isinstance(previous.decision, Fix):
                action = Action.EDIT
            else:
                action = Action.CREATE
            logger.info("Iteration %d/%d: %s '%s'", index, max_iterations, action.value, context.name)

            try:
                asset, mask_path, instruction = await self._produce(action, context, state, masks)
                results = await self.evaluator.evaluate(asset, context, thresholds.fix_threshold)
                decision = self.policy.decide(results, thresholds, asset.width, asset.height)
                record = IterationRecord(
                    index=index,
                    action=action,
                    asset=asset,
                    metric_results=results,
                    decision=decision,
                    aggregate_score=aggregate_score(results),
                    mask_path=mask_path,
                    instruction=instruction,
                )
                self._save_iteration_metadata(run_dir, record)
            except Exception as exc:
                raise IterationFailure(index, action, exc) from exc

            state.append(record)
            logger.info(
                "Iteration %d scored %.3f -> %s",
                index,
                record.aggregate_score,
                decision.kind,
            )

            yield record

            if isinstance(decision, Proceed):
                return

    async def refine(
        self,
        context: RefinementContext,
        thresholds: RefinementThresholds,
        max_iterations: int = config.MAX_ITERATIONS,
        cancel_event: Optional[asyncio.Event] = None,
        on_iteration: Optional[Callable[[IterationRecord], None]] = None,
        initial_asset: Optional[AssetRef] = None,
    ) -> RefinementResult:
        """Refine an asset until every metric passes or the budget runs out.

        Args:
            context: What to build and how to judge it.
            thresholds: Fix and regeneration thresholds for this run.
            max_iterations: Maximum number of iterations.
            cancel_event: Set it to stop the run before the next iteration.
            on_iteration: Optional callback called after each iteration.
            initial_asset: Existing asset to evaluate (and fix) first instead
                of creating one in iteration 1.

        Returns:
            The accepted asset, or the best one seen if the run gave up or was
            cancelled.

        Raises:
            InvalidArgument: If the arguments are invalid; raised before any
                collaborator is called.
            IterationFailure: If an iteration fails.
            IOFailure: If the run directory, the summary or the final copy
                cannot be written.
            RefinementCancelled: If cancelled before the first iteration.
        """
        if not isinstance(thresholds, RefinementThresholds):
            thresholds = RefinementThresholds(**dict(thresholds))
        if max_iterations < 1:
            raise InvalidArgument(f"max_iterations must be at least 1, got {max_iterations}")
        if cancel_event is not None and cancel_event.is_set():
            raise RefinementCancelled()

        state = RefinementState(thresholds, initial_asset=initial_asset)
        run_dir = self._create_run_dir()

        async for record in self.iterate(context, state, max_iterations, run_dir, cancel_event):
            if on_iteration:
                on_iteration(record)

        last = state.last
        if last is None:
            raise RefinementCancelled()
        if isinstance(last.decision, Proceed):
            chosen = last
            stop_reason = "proceed"
        else:
            chosen = state.best()
            stop_reason = "cancelled" if state.cancelled else "give_up"
            logger.warning(
                "'%s' did not converge (%s) after %d iteration(s); best was iteration %d at %.3f",
                context.name,
                stop_reason,
                state.index,
                chosen.index,
                chosen.aggregate_score,
            )

        final_path = None
        if self.finalize:
            final_path = await asyncio.to_thread(mark_final, chosen.asset.path)

        result = RefinementResult(
            asset=chosen.asset,
            score=chosen.aggregate_score,
            metric_results=chosen.metric_results,
            iterations=state.index,
            converged=stop_reason == "proceed",
            cancelled=state.cancelled,
            stop_reason=stop_reason,
            decision=Proceed() if stop_reason == "proceed" else GiveUp(best_index=chosen.index),
            best_iteration=chosen.index,
            history=list(state.history),
            final_path=final_path,
        )
        self._save_summary(run_dir, context, result)
        return result


async def refine_asset(
    context: RefinementContext,
    fix_threshold: float = config.FIX_THRESHOLD,
    regen_threshold: float = config.REGEN_THRESHOLD,
    max_iterations: int = config.MAX_ITERATIONS,
    output_dir: Path = config.OUTPUTS_DIR,
    initial_asset: Optional[AssetRef] = None,
) -> RefinementResult:
    """Convenience function to refine one asset with the default back ends.

    Args:
        context: What to build and how to judge it.
        fix_threshold: Metrics below this get a localized fix.
        regen_threshold: Metrics below this force a full regeneration.
        max_iterations: Maximum number of iterations.
        output_dir: Directory to save outputs.
        initial_asset: Existing asset to start from instead of creating one.

    Returns:
        Complete refinement result.
    """
    thresholds = RefinementThresholds(fix_threshold=fix_threshold, regen_threshold=regen_threshold)
    orchestrator = RefinementOrchestrator(output_dir=output_dir)
    return await orchestrator.refine(
        context,
        thresholds,
        max_iterations=max_iterations,
        initial_asset=initial_asset,
    )
