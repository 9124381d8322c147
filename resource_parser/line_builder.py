"""
Line Reconstructor
==================
Groups positioned text runs into visual lines.

Runs are placed in page pixel space, sorted into reading order and
bucketed by their top edge: a run closer than ``merge_ratio * page_height``
to the current bucket's top joins it, anything further opens a new line.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Optional

from .content import Matrix, TextRun
from .geometry import PixelBox, normalize_bbox
from .models import ParsedLine

logger = logging.getLogger(__name__)

DEFAULT_MERGE_RATIO = 0.012


def collapse_whitespace(text: str) -> str:
    """Collapse runs of whitespace to single spaces and trim."""
    return " ".join(text.split())


@dataclass(frozen=True)
class PlacedRun:
    """A text run with its pixel box resolved."""
    text: str
    box: PixelBox


@dataclass
class _LineBucket:
    top: float
    runs: list[PlacedRun] = field(default_factory=list)


class LineReconstructor:
    """
    Builds ``ParsedLine`` objects for one page.

    ``compose`` is the content reader's transform composition; it is the
    only transform operation this class needs.
    """

    def __init__(
        self,
        compose: Callable[[Matrix, Matrix], Matrix],
        merge_ratio: float = DEFAULT_MERGE_RATIO,
    ):
        self.compose = compose
        self.merge_ratio = merge_ratio

    def build(
        self,
        runs: list[TextRun],
        viewport: Matrix,
        page_width: float,
        page_height: float,
    ) -> list[ParsedLine]:
        """
        Reconstruct the lines of a page, top to bottom.

        Args:
            runs: Text runs in content order.
            viewport: Page viewport transform (PDF space to pixels).
            page_width: Page width in pixels.
            page_height: Page height in pixels.

        Returns:
            Lines with normalized bounding boxes.
        """
        placed = [p for p in (self.place_run(r, viewport) for r in runs) if p]
        placed.sort(key=lambda p: (p.box.y1, p.box.x1))

        buckets = self._bucket(placed, page_height)

        lines: list[ParsedLine] = []
        for bucket in buckets:
            members = sorted(bucket.runs, key=lambda p: p.box.x1)
            text = collapse_whitespace(" ".join(p.text for p in members))
            if not text:
                continue

            box = members[0].box
            for member in members[1:]:
                box = box.union(member.box)

            lines.append(ParsedLine(
                text=text,
                bbox=normalize_bbox(box, page_width, page_height),
            ))

        logger.debug(
            f"Built {len(lines)} lines from {len(placed)} runs "
            f"({len(runs) - len(placed)} skipped)"
        )
        return lines

    def place_run(self, run: TextRun, viewport: Matrix) -> Optional[PlacedRun]:
        """Resolve a run's pixel box, or None if it has no usable content."""
        text = collapse_whitespace(run.text or "")
        if not text:
            return None

        tx = self.compose(viewport, run.transform)
        # (e, f) is the baseline anchor, not the top-left corner
        x, y = tx[4], tx[5]
        font_height = max(1.0, math.hypot(tx[2], tx[3]) or run.height_hint or 0.0)
        width = max(1.0, run.width or 0.0)

        box = PixelBox(x1=x, y1=y - font_height, x2=x + width, y2=y)
        if not box.is_finite():
            logger.debug(f"Skipping run with non-finite geometry: {text[:40]!r}")
            return None

        return PlacedRun(text=text, box=box)

    def _bucket(self, placed: list[PlacedRun], page_height: float) -> list[_LineBucket]:
        threshold = self.merge_ratio * page_height
        buckets: list[_LineBucket] = []

        for run in placed:
            top = run.box.y1
            if not buckets or abs(buckets[-1].top - top) > threshold:
                buckets.append(_LineBucket(top=top))
            buckets[-1].runs.append(run)

        return buckets
