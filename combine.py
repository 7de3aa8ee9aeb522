#!/usr/bin/env python3
"""
Combine a group of images into one vertical strip in the most continuous order.

Pipeline: load → eligibility check → edge signatures → sequencing → stacking.
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from PIL import Image

from edge_signature import (
    BLANK_TOLERANCE, LETTERBOX_RATIO, MAX_LETTERBOX_ROWS, SAMPLE_STRIDE,
    DEFAULT_CONFIG, EdgeConfig, RGBAImage, extract_edge_signatures, load_image,
)
from sequence import SequenceResult, order_images, sequence_signatures

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

ASPECT_RATIO_TOLERANCE = 0.10  # Relative ratio difference allowed within a group


# =============================================================================
# Eligibility
# =============================================================================

def aspect_ratio(width: int, height: int) -> float:
    """Width over height."""
    if height <= 0:
        raise ValueError(f"Cannot compute aspect ratio of a {width}x{height} image")
    return width / height


def check_combinable(sizes: list[tuple[int, int]],
                     tolerance: float = ASPECT_RATIO_TOLERANCE) -> tuple[bool, str]:
    """
    Decide whether a group of images looks like slices of one tall picture.

    Every image must be landscape, and every aspect ratio must lie within
    `tolerance` (relative) of the first image's ratio.

    Args:
        sizes: (width, height) per image
        tolerance: Allowed relative aspect-ratio deviation (0.1 = 10%)

    Returns:
        (eligible, reason) - reason explains the verdict
    """
    if len(sizes) < 2:
        return False, f"Need at least 2 images, got {len(sizes)}"

    for i, (w, h) in enumerate(sizes, 1):
        if w <= h:
            return False, f"Image {i} is not horizontal ({w}x{h})"

    first_ratio = aspect_ratio(*sizes[0])
    for i, (w, h) in enumerate(sizes, 1):
        ratio = aspect_ratio(w, h)
        difference = abs(ratio - first_ratio) / first_ratio
        logger.debug("Image %d: ratio=%.3f, diff=%.1f%%", i, ratio, difference * 100)
        if difference > tolerance:
            return False, (
                f"Image {i} ratio {ratio:.3f} differs from {first_ratio:.3f} "
                f"by {difference * 100:.1f}% (max {tolerance * 100:.0f}%)"
            )

    return True, "All images are horizontal with similar aspect ratios"


# =============================================================================
# Compositing
# =============================================================================

def stack_images(images: list[Image.Image]) -> Image.Image:
    """
    Stack images top to bottom on one canvas.

    Each image is scaled to the widest image's width, keeping its aspect
    ratio.
    """
    if not images:
        raise ValueError("No images to stack")

    max_w = max(im.width for im in images)

    # Normalize widths to the widest image
    norm = []
    for im in images:
        im = im.convert('RGBA')
        if im.width != max_w:
            scaled_h = max(1, round(im.height * max_w / im.width))
            im = im.resize((max_w, scaled_h), Image.LANCZOS)
        norm.append(im)

    total_h = sum(im.height for im in norm)
    logger.debug("Creating canvas: %dx%d", max_w, total_h)
    combined = Image.new('RGBA', (max_w, total_h), (0, 0, 0, 0))

    y = 0
    for im in norm:
        combined.paste(im, (0, y))
        y += im.height

    return combined


@dataclass
class CombineResult:
    """Stacked image and the sequencing decision behind it."""
    image: Image.Image
    sequence: SequenceResult


def combine_images(images: list[Image.Image], config: EdgeConfig = DEFAULT_CONFIG,
                   log: Optional[Callable[[str], None]] = None) -> CombineResult:
    """Order images by edge continuity and stack them."""
    handles = [RGBAImage.from_pil(im) for im in images]
    signatures = extract_edge_signatures(handles, config, log)
    sequence = sequence_signatures(signatures, log)
    stacked = stack_images(order_images(images, sequence.order))
    return CombineResult(image=stacked, sequence=sequence)


def save_image(img: Image.Image, output_path: Path) -> None:
    """Save, flattening alpha for formats that cannot store it."""
    if output_path.suffix.lower() in ('.jpg', '.jpeg'):
        img = img.convert('RGB')
    img.save(output_path)


# =============================================================================
# Command Line
# =============================================================================

def add_tuning_arguments(parser: argparse.ArgumentParser) -> None:
    """Flags shared by the single-group and batch tools."""
    parser.add_argument(
        '--force',
        action='store_true',
        help='Combine even if the images fail the orientation/aspect-ratio check'
    )
    parser.add_argument(
        '--ratio-tolerance',
        type=float,
        default=ASPECT_RATIO_TOLERANCE,
        help=f'Allowed relative aspect-ratio difference (default {ASPECT_RATIO_TOLERANCE})'
    )
    parser.add_argument(
        '--blank-tolerance',
        type=float,
        default=BLANK_TOLERANCE,
        help=f'Max RGB distance for a row to count as blank (default {BLANK_TOLERANCE})'
    )
    parser.add_argument(
        '--letterbox-ratio',
        type=float,
        default=LETTERBOX_RATIO,
        help=f'Fraction of height scanned for letterboxing (default {LETTERBOX_RATIO})'
    )
    parser.add_argument(
        '--max-letterbox-rows',
        type=int,
        default=MAX_LETTERBOX_ROWS,
        help=f'Cap on rows scanned for letterboxing (default {MAX_LETTERBOX_ROWS})'
    )
    parser.add_argument(
        '--stride',
        type=int,
        default=SAMPLE_STRIDE,
        help=f'Sample every Nth pixel of an edge row (default {SAMPLE_STRIDE})'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Print sequencing diagnostics'
    )


def config_from_args(args: argparse.Namespace) -> EdgeConfig:
    return EdgeConfig(
        blank_tolerance=args.blank_tolerance,
        letterbox_ratio=args.letterbox_ratio,
        max_letterbox_rows=args.max_letterbox_rows,
        sample_stride=args.stride,
    )


def setup_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format='[%(name)s] %(message)s')


def format_order(order: list[int]) -> str:
    """1-based order, the way a person numbers the input files."""
    return ', '.join(str(i + 1) for i in order)


def main():
    parser = argparse.ArgumentParser(
        description='Stack images vertically in the order that best continues their edges.'
    )
    parser.add_argument(
        'images',
        nargs='+',
        help='Image files to combine'
    )
    parser.add_argument(
        '--output', '-o',
        required=True,
        help='Path for the combined image (PNG recommended)'
    )
    add_tuning_arguments(parser)

    args = parser.parse_args()
    setup_logging(args.verbose)

    try:
        config = config_from_args(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    images = []
    for path in args.images:
        try:
            images.append(load_image(path))
        except (FileNotFoundError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(2)

    if not args.force:
        ok, reason = check_combinable([im.size for im in images], args.ratio_tolerance)
        if not ok:
            print(f"Skipping: {reason} (use --force to combine anyway)", file=sys.stderr)
            sys.exit(2)

    output_path = Path(args.output)
    try:
        result = combine_images(images, config)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        save_image(result.image, output_path)
    except Exception as e:
        print(f"Error combining images: {e}", file=sys.stderr)
        sys.exit(1)

    ordered_names = [Path(args.images[i]).name for i in result.sequence.order]
    print(f"Order: [{format_order(result.sequence.order)}] ({result.sequence.method}, "
          f"score {result.sequence.score:.2f})")
    for name in ordered_names:
        print(f"  {name}")
    print(f"Saved {result.image.width}x{result.image.height} image to {output_path}")


if __name__ == '__main__':
    main()
