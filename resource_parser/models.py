"""
Data Models
===========
Pydantic models for the parsed resource output.
All models are immutable and serialize to camelCase JSON
(``model_dump(by_alias=True)``) for the caller to persist.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


class _FrozenModel(BaseModel):
    """Shared config: frozen, camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ─── Geometry ─────────────────────────────────────────────────────────────────


class NormalizedBBox(_FrozenModel):
    """
    Page-relative bounding box with a top-left origin.
    Every field is clamped to [0, 1] independently.
    """
    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)
    w: float = Field(ge=0.0, le=1.0)
    h: float = Field(ge=0.0, le=1.0)

    @property
    def center_y(self) -> float:
        return self.y + self.h / 2


# ─── Page Content ─────────────────────────────────────────────────────────────


class ParsedLine(_FrozenModel):
    """One visual text line."""
    text: str
    bbox: NormalizedBBox


class ParsedDiagram(_FrozenModel):
    """One extracted raster region, stored as PNG."""
    url: str
    storage_path: str
    bbox: NormalizedBBox
    nearest_line_index: Optional[int] = Field(
        default=None,
        description="Index into the page's lines, None when the page has no lines",
    )


class ParsedPage(_FrozenModel):
    """Lines and diagrams of a single page, in pixel units at scale 1."""
    page_number: int = Field(ge=1)
    width: float
    height: float
    lines: list[ParsedLine] = Field(default_factory=list)
    diagrams: list[ParsedDiagram] = Field(default_factory=list)


# ─── Questions ────────────────────────────────────────────────────────────────


class Question(_FrozenModel):
    """
    A run of lines on one page that starts with a question marker.
    ``start_line`` and ``end_line`` are inclusive indices into that
    page's ``lines``.
    """
    index: int = Field(ge=0)
    label: str
    page_number: int = Field(ge=1)
    start_line: int = Field(ge=0)
    end_line: int = Field(ge=0)
    text: str


# ─── Parse Result ─────────────────────────────────────────────────────────────


class ParsedResult(_FrozenModel):
    """
    Complete output of a parse run.
    This is the top-level JSON structure handed back to the caller.
    """
    version: Literal[1] = 1
    kind: Literal["pdf"] = "pdf"
    resource_id: str
    extracted_at: str
    pages: list[ParsedPage] = Field(default_factory=list)
    questions: list[Question] = Field(default_factory=list)

    def to_json(self, indent: Optional[int] = 2) -> str:
        """Serialize with camelCase keys."""
        return self.model_dump_json(by_alias=True, indent=indent)


# ─── Validation Report ────────────────────────────────────────────────────────


class ValidationReport(_FrozenModel):
    """Post-parse summary and invariant check."""
    total_pages: int = 0
    total_lines: int = 0
    total_diagrams: int = 0
    total_questions: int = 0
    diagrams_without_line: int = 0
    questions_per_page: dict[int, int] = Field(default_factory=dict)
    issues: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def is_valid(self) -> bool:
        return not self.issues
