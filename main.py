#!/usr/bin/env python3
"""Entry point for the asset refinement loop.

Usage:
    # Refine a character sheet
    python main.py character "A tall detective in a worn trench coat" --name Alice

    # Refine location art
    python main.py location "A rain-soaked alley behind a jazz club" --name Alley

    # Start from an existing image
    python main.py location "A rain-soaked alley" --image alley.png

    # Run with options
    python main.py character "prompt" --pose "full body, walking" --max-iterations 3 --fix-threshold 0.9
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import config


def run_refine(args: argparse.Namespace):
    """Run the refinement loop from CLI."""
    from PIL import Image

    from asset_refiner import (
        AssetKind,
        AssetRef,
        IterationRecord,
        RefinementContext,
        RefinementOrchestrator,
        RefinementThresholds,
    )

    context = RefinementContext(
        kind=AssetKind(args.command),
        name=args.name,
        description=args.description,
        characteristics=args.trait,
        situational=args.situational,
        pose=args.pose,
        style=args.style,
        mood=args.mood,
        references=args.reference,
    )
    thresholds = RefinementThresholds(
        fix_threshold=args.fix_threshold,
        regen_threshold=args.regen_threshold,
    )

    print(f"\n{'='*60}")
    print("Asset Refinement Loop")
    print(f"{'='*60}\n")
    print(f"{context.kind.value.title()}: {context.name}")
    print(f"Metrics: {', '.join(m.value for m in context.resolved_metrics())}")
    print(f"Fix threshold: {thresholds.fix_threshold}")
    print(f"Regen threshold: {thresholds.regen_threshold}")
    print(f"Max iterations: {args.max_iterations}")
    print()

    initial_asset = None
    if args.image:
        with Image.open(args.image) as image:
            initial_asset = AssetRef(path=args.image, width=image.width, height=image.height)
        print(f"Starting from: {args.image} ({initial_asset.width}x{initial_asset.height})\n")

    def on_iteration(record: IterationRecord):
        """Callback to print progress."""
        print(f"[Iteration {record.index}] {record.action.value}")
        for result in record.metric_results:
            print(f"  {result.metric.value:<10} {result.score.value:.2f}")
        print(f"  Aggregate: {record.aggregate_score:.2f}")
        print(f"  Image saved: {record.asset.path}")
        print(f"  Decision: {record.decision.kind}")

        reasons = getattr(record.decision, "reasons", [])
        for reason in reasons[:3]:  # Show first 3
            print(f"    - {reason.text}")
        print()

    orchestrator = RefinementOrchestrator(output_dir=args.output_dir)
    result = asyncio.run(
        orchestrator.refine(
            context,
            thresholds,
            max_iterations=args.max_iterations,
            on_iteration=on_iteration,
            initial_asset=initial_asset,
        )
    )

    print(f"{'='*60}")
    print("COMPLETE")
    print(f"{'='*60}")
    print(f"Total iterations: {result.iterations}")
    print(f"Stop reason: {result.stop_reason.replace('_', ' ')}")
    print(f"Converged: {'yes' if result.converged else 'no'}")
    print(f"Best iteration: {result.best_iteration} ({result.score:.2f})")
    print(f"Best image: {result.asset.path}")
    if result.final_path:
        print(f"Final image: {result.final_path}")
    print()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Asset Refinement Loop",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for kind in ("character", "location"):
        sub = subparsers.add_parser(kind, help=f"Generate and refine {kind} art")
        sub.add_argument(
            "description",
            type=str,
            help=f"Visual description of the {kind}",
        )
        sub.add_argument(
            "--name",
            type=str,
            default=kind.title(),
            help=f"Name of the {kind}",
        )
        sub.add_argument(
            "--style",
            type=str,
            default="Graphic Novel",
            help="Visual style (default: Graphic Novel)",
        )
        sub.add_argument("--mood", type=str, default=None, help="Overall mood of the image")
        sub.add_argument(
            "--pose",
            type=str,
            default="Full body frontal, neutral pose" if kind == "character" else None,
            help="Pose or shot description",
        )
        sub.add_argument(
            "--trait",
            action="append",
            default=[],
            help="Defining characteristic (repeatable)",
        )
        sub.add_argument(
            "--situational",
            action="append",
            default=[],
            help="Situational characteristic (repeatable)",
        )
        sub.add_argument(
            "--reference",
            action="append",
            type=Path,
            default=[],
            help="Reference image path (repeatable)",
        )
        sub.add_argument(
            "--image",
            type=Path,
            default=None,
            help="Existing image to evaluate and fix instead of generating one",
        )
        sub.add_argument(
            "--fix-threshold",
            type=float,
            default=config.FIX_THRESHOLD,
            help=f"Below this a metric gets a localized fix (default: {config.FIX_THRESHOLD})",
        )
        sub.add_argument(
            "--regen-threshold",
            type=float,
            default=config.REGEN_THRESHOLD,
            help=f"Below this the asset is regenerated (default: {config.REGEN_THRESHOLD})",
        )
        sub.add_argument(
            "--max-iterations", "-m",
            type=int,
            default=config.MAX_ITERATIONS,
            help=f"Maximum iterations (default: {config.MAX_ITERATIONS})",
        )
        sub.add_argument(
            "--output-dir", "-o",
            type=Path,
            default=config.OUTPUTS_DIR,
            help=f"Output directory (default: {config.OUTPUTS_DIR})",
        )

    args = parser.parse_args()

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command in ("character", "location"):
        run_refine(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
