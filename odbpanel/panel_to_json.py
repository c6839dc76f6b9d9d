#!/usr/bin/env python3
"""ODB++ panel layer report.

Loads one layer of a step, expands its step-and-repeat cells and prints
a JSON summary: bounding rectangle, symbol/repeat counts and the
polarity-split feature count tables.

Usage:
    odbpanel input.tgz [-s step] [-l layer] [--no-step-repeat] [-v]
    odbpanel input.tgz --list-steps
    odbpanel input.tgz --list-layers
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .errors import OdbError
from .job import OdbJob
from .utils import fmt

log = logging.getLogger(__name__)


def _rect(rect):
    """Format a Rect as [x, y, w, h] list."""
    return [float(fmt(v)) for v in rect.as_list()]


def _count_repeats(layer):
    return sum(1 + _count_repeats(r) for r in layer.repeats)


def layer_to_json(layer):
    """JSON-ready summary of a LayerFeatures instance."""
    return {
        "step": layer.step,
        "path": layer.features_path,
        "step_repeat": layer.show_step_repeat,
        "bounding_rect": _rect(layer.bounding_rect()),
        "active_rect": _rect(layer.active_rect),
        "symbols": len(layer.symbols()),
        "total_symbols": sum(1 for _ in layer.iter_symbols()),
        "repeats": _count_repeats(layer),
        "own_counts": layer.own_counts().as_dict(),
        "counts": layer.counts().as_dict(),
        "report": layer.report(),
    }


def _default_layer(job):
    layers = job.layers()
    for info in layers:
        if info.context == "board":
            return info.name
    return layers[0].name if layers else None


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Report ODB++ layer features with step-and-repeat expansion"
    )
    parser.add_argument("input", help="ODB++ archive (.tgz/.zip) or directory")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable verbose logging")
    parser.add_argument("-s", "--step", default=None,
                        help="Step name (default: first step)")
    parser.add_argument("-l", "--layer", default=None,
                        help="Layer name (default: first board layer)")
    parser.add_argument("--no-step-repeat", action="store_true",
                        help="Do not expand step-and-repeat cells")
    parser.add_argument("--list-steps", action="store_true",
                        help="List available steps and exit")
    parser.add_argument("--list-layers", action="store_true",
                        help="List matrix layers and exit")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: {input_path} not found", file=sys.stderr)
        return 1

    try:
        job = OdbJob(input_path)
    except (OdbError, OSError, ValueError) as e:
        print(f"Error opening ODB++ job: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc(file=sys.stderr)
        return 1

    with job:
        try:
            if args.list_steps:
                print(f"Steps in {input_path}:")
                for s in job.steps():
                    print(f"  {s}")
                return 0

            if args.list_layers:
                print(f"Layers in {input_path}:")
                for info in job.layers():
                    print(f"  {info.name} ({info.type}, {info.context})")
                return 0

            step = args.step or job.default_step()
            layer_name = args.layer or _default_layer(job)
        except OdbError as e:
            print(f"Error reading matrix: {e}", file=sys.stderr)
            return 1

        if not step or not layer_name:
            print("Error: no step or layer to report", file=sys.stderr)
            return 1

        layer = job.layer_features(step, layer_name,
                                   step_repeat=not args.no_step_repeat)
        if not layer.has_data:
            print(f"Error: no features for {step}/{layer_name}",
                  file=sys.stderr)
            return 1

        log.info("Symbols: %d", len(layer.symbols()))
        log.info("Repeats: %d", len(layer.repeats))
        log.info("Cache: %d hits, %d misses", job.cache.hits, job.cache.misses)

        json.dump(layer_to_json(layer), sys.stdout, separators=(",", ":"))
        print()  # trailing newline
    return 0


if __name__ == "__main__":
    sys.exit(main())
