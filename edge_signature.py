#!/usr/bin/env python3
"""
Edge signatures for vertical image sequencing.

Each image is reduced to a fingerprint of its first and last content rows:
1. Scan inward from each edge, skipping uniform letterbox rows
2. Sample the first/last content row every Nth pixel
3. Record whether blank padding was found on either edge
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

BLANK_TOLERANCE = 35.0  # Max Euclidean RGB distance for a "same colour" pixel
LETTERBOX_RATIO = 0.1  # Scan at most 10% of the height for padding...
MAX_LETTERBOX_ROWS = 50  # ...and never more than 50 rows
SAMPLE_STRIDE = 10  # Sample every 10th pixel of an edge row

# Image size limits (security: prevent decompression bombs)
MAX_IMAGE_PIXELS = 50_000_000  # 50 megapixels
MAX_IMAGE_DIMENSION = 10_000  # 10k pixels per side


@dataclass(frozen=True)
class EdgeConfig:
    """Tunable parameters for letterbox detection and row sampling."""
    blank_tolerance: float = BLANK_TOLERANCE
    letterbox_ratio: float = LETTERBOX_RATIO
    max_letterbox_rows: int = MAX_LETTERBOX_ROWS
    sample_stride: int = SAMPLE_STRIDE

    def __post_init__(self):
        if self.blank_tolerance < 0:
            raise ValueError(f"blank_tolerance must be >= 0, got {self.blank_tolerance}")
        if not 0.0 <= self.letterbox_ratio < 0.5:
            raise ValueError(f"letterbox_ratio must be in [0, 0.5), got {self.letterbox_ratio}")
        if self.max_letterbox_rows < 0:
            raise ValueError(f"max_letterbox_rows must be >= 0, got {self.max_letterbox_rows}")
        if self.sample_stride < 1:
            raise ValueError(f"sample_stride must be >= 1, got {self.sample_stride}")


DEFAULT_CONFIG = EdgeConfig()


# =============================================================================
# Image Handles
# =============================================================================

class RowSource(Protocol):
    """Anything that can hand out one horizontal RGBA row at a time."""
    width: int
    height: int

    def read_row(self, y: int) -> np.ndarray: ...


class RGBAImage:
    """Row-readable view over an (h, w, 4) uint8 pixel array."""

    def __init__(self, pixels: np.ndarray):
        pixels = np.asarray(pixels, dtype=np.uint8)
        if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
            raise ValueError(f"Expected an (h, w, 3) or (h, w, 4) array, got shape {pixels.shape}")
        if pixels.shape[2] == 3:
            alpha = np.full(pixels.shape[:2] + (1,), 255, dtype=np.uint8)
            pixels = np.concatenate([pixels, alpha], axis=2)
        self.pixels = pixels
        self.height, self.width = pixels.shape[:2]

    @classmethod
    def from_pil(cls, img: Image.Image) -> 'RGBAImage':
        return cls(np.array(img.convert('RGBA')))

    def read_row(self, y: int) -> np.ndarray:
        if not 0 <= y < self.height:
            raise IndexError(f"Row {y} out of range for image of height {self.height}")
        return self.pixels[y].reshape(-1)

    def __repr__(self):
        return f"RGBAImage({self.width}x{self.height})"


def load_image(image_path: str) -> Image.Image:
    """
    Open an image file as RGBA, rejecting anything too large to analyze.

    Raises:
        FileNotFoundError: If image file doesn't exist
        ValueError: If file is not a valid image or exceeds size limits
    """
    try:
        img = Image.open(image_path)
    except FileNotFoundError:
        raise FileNotFoundError(f"Image not found: {image_path}")
    except Exception as e:
        raise ValueError(f"Could not open image: {e}") from e

    width, height = img.size
    if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
        raise ValueError(
            f"Image dimensions {width}x{height} exceed maximum "
            f"{MAX_IMAGE_DIMENSION}x{MAX_IMAGE_DIMENSION}"
        )
    if width * height > MAX_IMAGE_PIXELS:
        raise ValueError(
            f"Image has {width * height:,} pixels, exceeding maximum {MAX_IMAGE_PIXELS:,}"
        )

    return img.convert('RGBA')


# =============================================================================
# Row Sampling
# =============================================================================

def _row_pixels(row: np.ndarray) -> np.ndarray:
    """Reshape a flat RGBA row into (width, 4)."""
    row = np.asarray(row)
    if row.ndim != 1 or row.size % 4 != 0:
        raise ValueError(f"Row must be a flat RGBA sequence, got {row.size} values")
    return row.reshape(-1, 4)


def sample_row(row: np.ndarray, stride: int = SAMPLE_STRIDE) -> np.ndarray:
    """
    Subsample an RGBA row into RGB triples.

    Takes pixels 0, stride, 2*stride, ... and drops the alpha channel.

    Returns:
        int32 array of shape (n_samples, 3)
    """
    pixels = _row_pixels(row)
    return pixels[::stride, :3].astype(np.int32)


# =============================================================================
# Blank / Letterbox Detection
# =============================================================================

def color_distance(p, q) -> float:
    """
    Euclidean distance between two RGB colours.

    Scalar form of the metric is_row_blank() applies to a whole row at once.
    """
    dr = float(p[0]) - float(q[0])
    dg = float(p[1]) - float(q[1])
    db = float(p[2]) - float(q[2])
    return math.sqrt(dr * dr + dg * dg + db * db)


def is_row_blank(row: np.ndarray, tolerance: float = BLANK_TOLERANCE) -> bool:
    """
    True if every pixel lies within `tolerance` of the row's first pixel.

    The boundary is inclusive: a pixel exactly `tolerance` away still counts
    as the same colour.
    """
    pixels = _row_pixels(row)
    if len(pixels) == 0:
        return True

    rgb = pixels[:, :3].astype(np.float64)
    distances = np.sqrt(((rgb - rgb[0]) ** 2).sum(axis=1))
    return bool((distances <= tolerance).all())


def letterbox_window(height: int, ratio: float = LETTERBOX_RATIO,
                     max_rows: int = MAX_LETTERBOX_ROWS) -> int:
    """Number of rows scanned from each edge when looking for padding."""
    return min(int(math.floor(height * ratio)), max_rows)


def find_content_top(image: RowSource, config: EdgeConfig = DEFAULT_CONFIG) -> int:
    """
    First non-blank row within the top scan window.

    If every row in the window is blank, content is assumed to start right
    after the window.
    """
    window = letterbox_window(image.height, config.letterbox_ratio, config.max_letterbox_rows)
    for y in range(window):
        if not is_row_blank(image.read_row(y), config.blank_tolerance):
            return y
    return window


def find_content_bottom(image: RowSource, config: EdgeConfig = DEFAULT_CONFIG) -> int:
    """Mirror of find_content_top, scanning upward from the last row."""
    window = letterbox_window(image.height, config.letterbox_ratio, config.max_letterbox_rows)
    last = image.height - 1
    for y in range(last, last - window, -1):
        if not is_row_blank(image.read_row(y), config.blank_tolerance):
            return y
    return last - window


# =============================================================================
# Edge Signatures
# =============================================================================

@dataclass(frozen=True, eq=False)
class EdgeSignature:
    """Fingerprint of an image's first and last content rows."""
    top_pixels: np.ndarray  # (n, 3) RGB samples from the content top row
    bottom_pixels: np.ndarray  # (n, 3) RGB samples from the content bottom row
    top_row: int
    bottom_row: int
    has_blank_top: bool
    has_blank_bottom: bool

    def __post_init__(self):
        # Private read-only copies; the caller's arrays stay untouched
        for name in ('top_pixels', 'bottom_pixels'):
            pixels = np.array(getattr(self, name), dtype=np.int32).reshape(-1, 3)
            pixels.setflags(write=False)
            object.__setattr__(self, name, pixels)


def _default_log(message: str) -> None:
    logger.debug(message)


def extract_edge_signature(image: RowSource, config: EdgeConfig = DEFAULT_CONFIG,
                           log: Optional[Callable[[str], None]] = None) -> EdgeSignature:
    """
    Build the edge signature for one image.

    Args:
        image: Row-readable image handle
        config: Detection and sampling parameters
        log: Optional diagnostic sink (defaults to the module logger)

    Returns:
        EdgeSignature with sampled content rows and blank-edge flags
    """
    log = log or _default_log
    width, height = image.width, image.height

    if width == 0 or height == 0:
        empty = np.empty((0, 3), dtype=np.int32)
        log(f"Degenerate image {width}x{height}, no edge pixels")
        return EdgeSignature(
            top_pixels=empty,
            bottom_pixels=empty.copy(),
            top_row=0,
            bottom_row=max(height - 1, 0),
            has_blank_top=False,
            has_blank_bottom=False,
        )

    top_row = find_content_top(image, config)
    bottom_row = find_content_bottom(image, config)

    has_blank_top = top_row > 0
    has_blank_bottom = bottom_row < height - 1
    if has_blank_top:
        log(f"Skipped {top_row} letterbox rows from top")
    if has_blank_bottom:
        log(f"Skipped {height - 1 - bottom_row} letterbox rows from bottom")

    return EdgeSignature(
        top_pixels=sample_row(image.read_row(top_row), config.sample_stride),
        bottom_pixels=sample_row(image.read_row(bottom_row), config.sample_stride),
        top_row=top_row,
        bottom_row=bottom_row,
        has_blank_top=has_blank_top,
        has_blank_bottom=has_blank_bottom,
    )


def extract_edge_signatures(images: list, config: EdgeConfig = DEFAULT_CONFIG,
                            log: Optional[Callable[[str], None]] = None) -> list[EdgeSignature]:
    """Edge signatures for every image, in input order."""
    log = log or _default_log
    signatures = []
    for i, image in enumerate(images):
        signatures.append(extract_edge_signature(image, config, log))
        log(f"Extracted edge pixels for image {i + 1}")
    return signatures
