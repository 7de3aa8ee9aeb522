#!/usr/bin/env python3
"""
Decide the vertical order of a small set of images from their edge signatures.

Two strategies:
1. Anchored: images with padding only on top (first) or only on bottom (last)
   pin the ends of the stack; the rest is ordered between them.
2. Permutation search: when no anchor pair exists, score every ordering of the
   non-floating images and keep the most continuous one.

Images padded on both edges ("floating") carry no adjacency signal and are
always appended last, in their original order.
"""

import itertools
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from functools import reduce
from typing import Callable, Optional

import numpy as np

from edge_signature import EdgeSignature

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_PIXEL_DIFFERENCE = 255.0 ** 2  # Worst possible per-component squared error
MAX_SEARCH_IMAGES = 8  # 8! = 40320 chains; beyond this the search is impractical


# =============================================================================
# Difference Metric
# =============================================================================

def pixel_difference(pixels1: np.ndarray, pixels2: np.ndarray) -> float:
    """
    Mean squared difference between two sampled rows (lower = more similar).

    Components are compared position by position over the shorter of the two
    rows. Two rows with nothing to compare are maximally dissimilar.
    """
    a = np.asarray(pixels1, dtype=np.float64).reshape(-1)
    b = np.asarray(pixels2, dtype=np.float64).reshape(-1)
    n = min(len(a), len(b))
    if n == 0:
        return MAX_PIXEL_DIFFERENCE

    diff = a[:n] - b[:n]
    return float(np.dot(diff, diff) / n)


def edge_difference(upper: EdgeSignature, lower: EdgeSignature) -> float:
    """How badly `upper`'s bottom edge continues into `lower`'s top edge."""
    return pixel_difference(upper.bottom_pixels, lower.top_pixels)


def chain_score(order, signatures: list[EdgeSignature]) -> float:
    """Sum of edge differences between consecutive images in `order`."""
    return float(sum(
        edge_difference(signatures[upper], signatures[lower])
        for upper, lower in zip(order, order[1:])
    ))


# =============================================================================
# Classification
# =============================================================================

class EdgeClass(Enum):
    FIRST = 'first'  # blank top only
    LAST = 'last'  # blank bottom only
    FLOATING = 'floating'  # blank on both edges
    MIDDLE = 'middle'  # no blank edge


def classify(signature: EdgeSignature) -> EdgeClass:
    if signature.has_blank_top and signature.has_blank_bottom:
        return EdgeClass.FLOATING
    if signature.has_blank_top:
        return EdgeClass.FIRST
    if signature.has_blank_bottom:
        return EdgeClass.LAST
    return EdgeClass.MIDDLE


def find_anchors(classes: list[EdgeClass]) -> tuple[Optional[int], Optional[int]]:
    """
    Pick the first/last anchor indices.

    When several images qualify, the highest index wins: the fold keeps
    overwriting the anchor with each later match.
    """
    def step(anchors, item):
        first, last = anchors
        i, cls = item
        if cls is EdgeClass.FIRST:
            first = i
        elif cls is EdgeClass.LAST:
            last = i
        return first, last

    return reduce(step, enumerate(classes), (None, None))


# =============================================================================
# Search
# =============================================================================

@dataclass
class SequenceResult:
    """Chosen order plus how it was reached."""
    order: list[int]
    method: str  # 'trivial', 'anchored', 'anchored-search' or 'permutation'
    score: float = 0.0  # Chain score of the non-floating part of the order
    floating: list[int] = field(default_factory=list)
    first: Optional[int] = None
    last: Optional[int] = None
    permutations_tested: int = 0


def best_chain(indices: list[int], signatures: list[EdgeSignature],
               head: tuple = (), tail: tuple = ()) -> tuple[list[int], float, int]:
    """
    Exhaustively order `indices` between fixed `head` and `tail` images.

    Permutations are generated lazily in lexicographic order of position; only
    a strictly lower score replaces the current best, so the earliest
    permutation wins ties.

    Returns:
        (full chain including head and tail, its score, permutations tested)

    Raises:
        ValueError: If there are more than MAX_SEARCH_IMAGES indices to permute
    """
    if len(indices) > MAX_SEARCH_IMAGES:
        raise ValueError(
            f"Cannot search orderings of {len(indices)} images "
            f"(maximum {MAX_SEARCH_IMAGES})"
        )

    best_order = list(head) + list(indices) + list(tail)
    best_score = float('inf')
    tested = 0

    for perm in itertools.permutations(indices):
        candidate = list(head) + list(perm) + list(tail)
        score = chain_score(candidate, signatures)
        tested += 1
        if score < best_score:
            best_score = score
            best_order = candidate

    return best_order, best_score, tested


def _format_order(order) -> str:
    return ', '.join(str(i + 1) for i in order)


def _default_log(message: str) -> None:
    logger.debug(message)


def sequence_signatures(signatures: list[EdgeSignature],
                        log: Optional[Callable[[str], None]] = None) -> SequenceResult:
    """
    Find the most visually continuous top-to-bottom order.

    Args:
        signatures: One edge signature per image, in input order
        log: Optional diagnostic sink (defaults to the module logger)

    Returns:
        SequenceResult whose `order` is a permutation of range(len(signatures))
    """
    log = log or _default_log
    n = len(signatures)

    if n <= 1:
        return SequenceResult(order=list(range(n)), method='trivial')

    log('Analyzing edge pixels to find optimal order...')

    classes = [classify(sig) for sig in signatures]
    for i, cls in enumerate(classes):
        if cls is not EdgeClass.MIDDLE:
            log(f"Image {i + 1} classified {cls.value.upper()}")

    floating = [i for i, cls in enumerate(classes) if cls is EdgeClass.FLOATING]
    first, last = find_anchors(classes)

    if first is not None and last is not None:
        log(f"Detected first image: {first + 1}, last image: {last + 1}")
        middle = [i for i in range(n) if i not in (first, last) and i not in floating]
        log(f"Middle images: [{_format_order(middle)}]")

        if len(middle) > 2:
            logger.warning(
                "%d middle images between anchors; searching all %d orderings",
                len(middle), math.factorial(len(middle)),
            )
            method = 'anchored-search'
        else:
            method = 'anchored'

        base, score, tested = best_chain(middle, signatures, head=(first,), tail=(last,))
        if len(middle) == 2:
            log(f"Middle order [{_format_order(base[1:3])}] chosen with score: {score:.2f}")
    else:
        log('No first/last detected, testing permutations...')
        indices = [i for i in range(n) if i not in floating]
        if floating:
            log(f"Floating images: [{_format_order(floating)}] (will be placed last)")
            log(f"Non-floating images: [{_format_order(indices)}]")

        method = 'permutation'
        base, score, tested = best_chain(indices, signatures)
        log(f"Tested {tested} permutations")
        log(f"Best order for non-floating: [{_format_order(base)}] with score: {score:.2f}")

    order = base + floating
    if floating:
        log(f"Final order (with floating at end): [{_format_order(order)}]")
    else:
        log(f"Final order: [{_format_order(order)}]")

    return SequenceResult(
        order=order,
        method=method,
        score=score,
        floating=floating,
        first=first,
        last=last,
        permutations_tested=tested,
    )


def find_optimal_order(signatures: list[EdgeSignature],
                       log: Optional[Callable[[str], None]] = None) -> list[int]:
    """Index order only; see sequence_signatures()."""
    return sequence_signatures(signatures, log).order


def order_images(images: list, order: list[int]) -> list:
    """Rearrange `images` according to an index order."""
    return [images[i] for i in order]
