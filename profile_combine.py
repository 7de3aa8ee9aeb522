#!/usr/bin/env python3
"""Profile the combine pipeline to see where time goes for one image group."""

import argparse
import cProfile
import io
import pstats
import sys
import time
from pathlib import Path

from batch_combine import find_images
from combine import stack_images
from edge_signature import RGBAImage, extract_edge_signatures, load_image
from sequence import order_images, sequence_signatures


def profile_group(image_paths: list[Path], verbose: bool = True) -> dict:
    """Time each pipeline stage for one group of images."""
    if verbose:
        print(f"\n{'='*60}")
        print(f"Profiling: {len(image_paths)} images from {image_paths[0].parent.name}")
        print(f"{'='*60}")

    timings = {}

    # Stage 1: Load
    start = time.perf_counter()
    images = [load_image(str(p)) for p in image_paths]
    handles = [RGBAImage.from_pil(im) for im in images]
    timings['load'] = time.perf_counter() - start

    # Stage 2: Edge signatures
    start = time.perf_counter()
    signatures = extract_edge_signatures(handles)
    timings['edge_signatures'] = time.perf_counter() - start

    # Stage 3: Sequencing
    start = time.perf_counter()
    result = sequence_signatures(signatures)
    timings['sequence'] = time.perf_counter() - start

    # Stage 4: Stacking
    start = time.perf_counter()
    stack_images(order_images(images, result.order))
    timings['stack'] = time.perf_counter() - start

    total = sum(timings.values())
    timings['total'] = total

    if verbose:
        print(f"  Method: {result.method} ({result.permutations_tested} orderings scored)")
        print(f"\nStage timings:")
        for stage, t in timings.items():
            pct = (t / total * 100) if stage != 'total' and total > 0 else 100
            print(f"  {stage:20s}: {t:6.3f}s ({pct:5.1f}%)")

    return timings


def detailed_profile(image_paths: list[Path]) -> None:
    """Run cProfile over signature extraction and sequencing."""
    print(f"\n{'='*60}")
    print(f"Detailed profile of extract_edge_signatures() + sequence_signatures()")
    print(f"{'='*60}")

    handles = [RGBAImage.from_pil(load_image(str(p))) for p in image_paths]

    profiler = cProfile.Profile()
    profiler.enable()
    sequence_signatures(extract_edge_signatures(handles))
    profiler.disable()

    stream = io.StringIO()
    stats = pstats.Stats(profiler, stream=stream)
    stats.sort_stats('cumulative')
    stats.print_stats(20)

    print(stream.getvalue())


def main():
    parser = argparse.ArgumentParser(description='Profile combining one group of images.')
    parser.add_argument('directory', help='Directory holding the image group')
    parser.add_argument('--detailed', action='store_true', help='Also print a cProfile report')
    args = parser.parse_args()

    directory = Path(args.directory)
    if not directory.is_dir():
        print(f"Error: Directory not found: {directory}", file=sys.stderr)
        sys.exit(2)

    image_paths = find_images(directory)
    if len(image_paths) < 2:
        print(f"Need at least 2 images in {directory}", file=sys.stderr)
        sys.exit(1)

    profile_group(image_paths)
    if args.detailed:
        detailed_profile(image_paths)


if __name__ == "__main__":
    main()
