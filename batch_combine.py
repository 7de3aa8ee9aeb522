#!/usr/bin/env python3
"""Batch combine image groups: every sub-directory of images becomes one strip."""

import argparse
import sys
import time
from pathlib import Path

from combine import (
    add_tuning_arguments, check_combinable, combine_images, config_from_args,
    format_order, save_image, setup_logging,
)
from edge_signature import load_image


def find_images(directory: Path) -> list[Path]:
    """Find all image files in directory."""
    extensions = {'.jpg', '.jpeg', '.png', '.webp'}
    return sorted(p for p in directory.iterdir()
                  if p.is_file() and p.suffix.lower() in extensions)


def find_groups(directory: Path) -> list[tuple[Path, list[Path]]]:
    """Sub-directories holding at least two images, sorted by name."""
    groups = []
    for sub in sorted(p for p in directory.iterdir() if p.is_dir()):
        images = find_images(sub)
        if len(images) >= 2:
            groups.append((sub, images))
    return groups


def main():
    parser = argparse.ArgumentParser(
        description='Combine each sub-directory of images into one vertical strip.'
    )
    parser.add_argument(
        '--input', '-i',
        required=True,
        help='Directory whose sub-directories each hold one image group'
    )
    parser.add_argument(
        '--output', '-o',
        required=True,
        help='Directory for combined images'
    )
    add_tuning_arguments(parser)

    args = parser.parse_args()
    setup_logging(args.verbose)

    input_dir = Path(args.input)
    output_dir = Path(args.output)

    # Validate input directory
    if not input_dir.is_dir():
        print(f"Error: Input directory not found: {input_dir}", file=sys.stderr)
        sys.exit(2)

    try:
        config = config_from_args(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    groups = find_groups(input_dir)
    if not groups:
        print(f"No image groups found in {input_dir}", file=sys.stderr)
        sys.exit(2)

    output_dir.mkdir(parents=True, exist_ok=True)

    total = len(groups)
    succeeded = 0
    skipped = []
    failed = []

    batch_start = time.perf_counter()

    for i, (group_dir, image_paths) in enumerate(groups, 1):
        try:
            group_start = time.perf_counter()
            images = [load_image(str(p)) for p in image_paths]

            if not args.force:
                ok, reason = check_combinable([im.size for im in images], args.ratio_tolerance)
                if not ok:
                    print(f"[{i}/{total}] {group_dir.name} → skipped: {reason}")
                    skipped.append(group_dir.name)
                    continue

            result = combine_images(images, config)

            output_file = output_dir / f"{group_dir.name}-combined.png"
            if output_file.exists():
                print(f"  Warning: Overwriting {output_file.name}", file=sys.stderr)
            save_image(result.image, output_file)
            group_elapsed = time.perf_counter() - group_start

            print(f"[{i}/{total}] {group_dir.name} → [{format_order(result.sequence.order)}] "
                  f"{result.sequence.method} ({group_elapsed:.2f}s)")
            succeeded += 1

        except Exception as e:
            error_msg = f"{type(e).__name__}: {e}"
            print(f"[{i}/{total}] {group_dir.name} → ERROR: {error_msg}", file=sys.stderr)
            failed.append((group_dir.name, error_msg))

    batch_elapsed = time.perf_counter() - batch_start

    # Summary
    print()
    print(f"Completed: {succeeded}/{total} combined in {batch_elapsed:.2f}s")
    if succeeded > 0:
        print(f"Average: {batch_elapsed / succeeded:.2f}s per group")
    if skipped:
        print(f"Skipped ({len(skipped)}): {', '.join(skipped)}")
    if failed:
        print(f"Failed ({len(failed)}):")
        for name, error in failed:
            print(f"  - {name}: {error}")
        sys.exit(1)


if __name__ == '__main__':
    main()
