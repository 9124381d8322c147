"""
Geometry Helpers
================
Pixel boxes, normalization to page-relative [0, 1] coordinates, and the
PyMuPDF-backed affine operations used by the shipped content reader.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable

import fitz  # PyMuPDF

from .content import Matrix, Point
from .models import NormalizedBBox

IDENTITY: Matrix = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)

UNIT_SQUARE: tuple[Point, ...] = ((0.0, 0.0), (1.0, 0.0), (0.0, 1.0), (1.0, 1.0))


@dataclass(frozen=True)
class PixelBox:
    """Box in page pixel space (top-left origin, y grows downwards)."""
    x1: float
    y1: float
    x2: float
    y2: float

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.x1, self.y1, self.x2, self.y2))

    def union(self, other: PixelBox) -> PixelBox:
        return PixelBox(
            x1=min(self.x1, other.x1),
            y1=min(self.y1, other.y1),
            x2=max(self.x2, other.x2),
            y2=max(self.y2, other.y2),
        )


def clamp01(value: float) -> float:
    """Clamp to [0, 1]; non-finite values become 0."""
    if not math.isfinite(value):
        return 0.0
    if value < 0:
        return 0.0
    if value > 1:
        return 1.0
    return value


def normalize_bbox(box: PixelBox, page_width: float, page_height: float) -> NormalizedBBox:
    """
    Convert a pixel box into page-relative coordinates.

    Each corner coordinate is divided by the page size and clamped on its
    own before width and height are derived, so a box hanging off the page
    keeps only its on-page extent.
    """
    x1, x2 = min(box.x1, box.x2), max(box.x1, box.x2)
    y1, y2 = min(box.y1, box.y2), max(box.y1, box.y2)

    w = page_width or 1
    h = page_height or 1

    nx1, nx2 = clamp01(x1 / w), clamp01(x2 / w)
    ny1, ny2 = clamp01(y1 / h), clamp01(y2 / h)

    return NormalizedBBox(
        x=nx1,
        y=ny1,
        w=clamp01(nx2 - nx1),
        h=clamp01(ny2 - ny1),
    )


def project_unit_square(
    matrix: Matrix,
    apply: Callable[[Matrix, Point], Point],
) -> PixelBox:
    """Axis-aligned bounds of the unit square after ``matrix``."""
    points = [apply(matrix, corner) for corner in UNIT_SQUARE]
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    return PixelBox(x1=min(xs), y1=min(ys), x2=max(xs), y2=max(ys))


class FitzGeometry:
    """
    Affine operations on ``fitz.Matrix``.

    PyMuPDF multiplies in row-vector order (``p * m1 * m2`` applies ``m1``
    first), so ``compose(outer, inner)`` is ``inner * outer``.
    """

    @staticmethod
    def compose(outer: Matrix, inner: Matrix) -> fitz.Matrix:
        return fitz.Matrix(inner) * fitz.Matrix(outer)

    @staticmethod
    def apply(matrix: Matrix, point: Point) -> Point:
        p = fitz.Point(point) * fitz.Matrix(matrix)
        return (p.x, p.y)
