"""
Page Content Types
==================
Input types handed to the parser by a PDF content reader.

The reader owns the PDF container, fonts and image decoding. It exposes,
per page, the viewport transform, positioned text runs, a drawing-operator
stream and a lookup for named image objects. The reader also owns the
transform type: the parser only composes and applies transforms through
``ContentReader.compose`` / ``ContentReader.apply``.

Transforms are 6-element affine matrices ``(a, b, c, d, e, f)`` mapping
``(x, y)`` to ``(a*x + c*y + e, b*x + d*y + f)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Sequence

Matrix = Sequence[float]
Point = tuple[float, float]


@dataclass(frozen=True)
class TextRun:
    """A decoded string positioned by a run-local transform."""
    text: str
    transform: Matrix
    width: float = 0.0
    height_hint: float = 0.0


@dataclass(frozen=True)
class RawImage:
    """
    Decoded pixel data for an image object.

    ``data`` holds ``width * height * channels`` bytes, row-major.
    ``alpha`` marks the last channel as transparency.
    """
    width: int
    height: int
    data: bytes
    channels: int = 4
    alpha: bool = True


class OpCode(str, Enum):
    """Drawing operators the diagram extractor understands."""
    SAVE = "save"
    RESTORE = "restore"
    TRANSFORM = "transform"
    PAINT_IMAGE = "paint_image"
    PAINT_INLINE_IMAGE = "paint_inline_image"


@dataclass(frozen=True)
class Operator:
    """
    One entry of a page operator stream.

    Argument conventions:
        TRANSFORM          -> args = (matrix,)
        PAINT_IMAGE        -> args = (name,)
        PAINT_INLINE_IMAGE -> args = (RawImage,)
    """
    op: OpCode
    args: tuple[Any, ...] = ()

    @classmethod
    def save(cls) -> "Operator":
        return cls(OpCode.SAVE)

    @classmethod
    def restore(cls) -> "Operator":
        return cls(OpCode.RESTORE)

    @classmethod
    def transform(cls, matrix: Matrix) -> "Operator":
        return cls(OpCode.TRANSFORM, (matrix,))

    @classmethod
    def paint_image(cls, name: str) -> "Operator":
        return cls(OpCode.PAINT_IMAGE, (name,))

    @classmethod
    def paint_inline_image(cls, image: Optional[RawImage]) -> "Operator":
        return cls(OpCode.PAINT_INLINE_IMAGE, (image,))


def _no_objects(name: str) -> Optional[RawImage]:
    return None


@dataclass
class PageContent:
    """Everything the parser needs from one page."""
    page_number: int
    width: float
    height: float
    viewport: Matrix
    text_runs: list[TextRun] = field(default_factory=list)
    operators: list[Operator] = field(default_factory=list)
    resolve_named_object: Callable[[str], Optional[RawImage]] = _no_objects


class ContentReader(Protocol):
    """Interface of the PDF content reader collaborator."""

    @property
    def page_count(self) -> int:
        ...

    def load_page(self, page_number: int) -> PageContent:
        """Load a page by its 1-based number."""
        ...

    def compose(self, outer: Matrix, inner: Matrix) -> Matrix:
        """Transform that applies ``inner`` first, then ``outer``."""
        ...

    def apply(self, matrix: Matrix, point: Point) -> Point:
        ...

    def close(self) -> None:
        ...
