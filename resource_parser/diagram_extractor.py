"""
Diagram Extractor
=================
Walks a page's drawing-operator stream, tracks the current transformation
matrix through save/restore, and records every painted raster image as a
diagram: encoded to PNG, stored, boxed in page-relative coordinates and
linked to the nearest reconstructed text line.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .content import Matrix, OpCode, Operator, PageContent, Point, RawImage
from .geometry import IDENTITY, PixelBox, normalize_bbox, project_unit_square
from .models import NormalizedBBox, ParsedDiagram, ParsedLine
from .storage import DEFAULT_KEY_PREFIX, Storage, diagram_key

logger = logging.getLogger(__name__)

DEFAULT_MAX_DIAGRAMS_PER_PAGE = 25


def nearest_line_index(bbox: NormalizedBBox, lines: list[ParsedLine]) -> Optional[int]:
    """
    Index of the line whose vertical center is closest to the box's.
    Ties go to the lowest index; None when there are no lines.
    """
    center = bbox.center_y
    best_index: Optional[int] = None
    best_distance = float("inf")

    for i, line in enumerate(lines):
        distance = abs(line.bbox.center_y - center)
        if distance < best_distance:
            best_distance = distance
            best_index = i

    return best_index


class DiagramExtractor:
    """
    Extracts diagrams from one page at a time.

    Collaborators:
        compose / apply: transform operations of the content reader
        encoder: object with ``encode(RawImage) -> bytes`` and ``content_type``
        storage: object with ``store(key, data, content_type)``
    """

    def __init__(
        self,
        compose: Callable[[Matrix, Matrix], Matrix],
        apply: Callable[[Matrix, Point], Point],
        encoder,
        storage: Storage,
        max_diagrams_per_page: int = DEFAULT_MAX_DIAGRAMS_PER_PAGE,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ):
        self.compose = compose
        self.apply = apply
        self.encoder = encoder
        self.storage = storage
        self.max_diagrams_per_page = max_diagrams_per_page
        self.key_prefix = key_prefix

    def extract(
        self,
        page: PageContent,
        lines: list[ParsedLine],
        grade: str,
        resource_id: str,
    ) -> list[ParsedDiagram]:
        """
        Extract the diagrams of a page in operator-stream order.

        Args:
            page: Page content from the reader.
            lines: The page's reconstructed lines (for nearest-line links).
            grade: Category label, used in the storage key.
            resource_id: Resource identifier, used in the storage key.

        Returns:
            At most ``max_diagrams_per_page`` diagrams.

        Raises:
            EncodingError: If a pixel buffer cannot be encoded.
            StorageError: If an encoded image cannot be stored.
        """
        diagrams: list[ParsedDiagram] = []
        ctm: Matrix = IDENTITY
        stack: list[Matrix] = []
        skipped = 0

        for operator in page.operators:
            op = operator.op

            if op == OpCode.SAVE:
                stack.append(ctm)
                continue

            if op == OpCode.RESTORE:
                ctm = stack.pop() if stack else IDENTITY
                continue

            if op == OpCode.TRANSFORM:
                matrix = operator.args[0] if operator.args else None
                if matrix is not None and len(matrix) == 6:
                    ctm = self.compose(ctm, matrix)
                continue

            if op not in (OpCode.PAINT_IMAGE, OpCode.PAINT_INLINE_IMAGE):
                continue

            if len(diagrams) >= self.max_diagrams_per_page:
                skipped += 1
                continue

            combined = self.compose(page.viewport, ctm)
            box = project_unit_square(combined, self.apply)

            image = self._resolve_image(operator, page)
            if image is None:
                continue

            diagrams.append(self._record(
                image, box, page, lines, len(diagrams), grade, resource_id
            ))

        if skipped:
            logger.debug(
                f"Page {page.page_number}: dropped {skipped} images over the "
                f"limit of {self.max_diagrams_per_page}"
            )

        return diagrams

    def _resolve_image(self, operator: Operator, page: PageContent) -> Optional[RawImage]:
        """Pixel data for a paint operator, or None if unavailable."""
        if operator.op == OpCode.PAINT_INLINE_IMAGE:
            image = operator.args[0] if operator.args else None
        else:
            name = operator.args[0] if operator.args else None
            if not name:
                return None
            image = page.resolve_named_object(name)
            if image is None:
                logger.debug(f"Page {page.page_number}: image {name!r} not resolvable")

        if image is None or not image.width or not image.height or not image.data:
            return None
        return image

    def _record(
        self,
        image: RawImage,
        box: PixelBox,
        page: PageContent,
        lines: list[ParsedLine],
        index: int,
        grade: str,
        resource_id: str,
    ) -> ParsedDiagram:
        png = self.encoder.encode(image)

        key = diagram_key(
            grade, resource_id, page.page_number, index, prefix=self.key_prefix
        )
        stored = self.storage.store(key, png, self.encoder.content_type)

        bbox = normalize_bbox(box, page.width, page.height)

        return ParsedDiagram(
            url=stored.url,
            storage_path=stored.path,
            bbox=bbox,
            nearest_line_index=nearest_line_index(bbox, lines),
        )
