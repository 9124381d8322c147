"""
PDF Content Reader
==================
Concrete content reader built on PyMuPDF (fitz) and pypdf.

    - PyMuPDF: page geometry, positioned text spans, image pixel decoding
    - pypdf:   content-stream tokenizing (q / Q / cm / Do / inline images)

Both libraries open the same bytes, so object numbers found while walking
the pypdf content stream are valid xrefs in the PyMuPDF document.

Form XObjects are flattened into the operator stream as
``save, transform(/Matrix), <form operators>, restore`` and their images
are registered under ``<form name>/<image name>`` to keep names unique.
"""

from __future__ import annotations

import io
import logging
import zlib
from functools import partial
from typing import Any, Optional

import fitz  # PyMuPDF
from pypdf import PdfReader
from pypdf.errors import PyPdfError
from pypdf.filters import FlateDecode
from pypdf.generic import ContentStream, IndirectObject

from .content import Operator, PageContent, RawImage, TextRun
from .exceptions import PdfLoadError
from .geometry import FitzGeometry

logger = logging.getLogger(__name__)

MAX_FORM_DEPTH = 8

_INLINE_COLORSPACES = {
    "/G": 1, "/DeviceGray": 1,
    "/RGB": 3, "/DeviceRGB": 3,
    "/CMYK": 4, "/DeviceCMYK": 4,
}

_FLATE_FILTERS = {"/Fl", "/FlateDecode"}


class FitzContentReader(FitzGeometry):
    """
    Reads page content for the parser.

    Use ``FitzContentReader.open(pdf_bytes)``; the reader is a context
    manager and closes its documents on exit.
    """

    def __init__(self, doc: fitz.Document, pdf: PdfReader):
        self.doc = doc
        self.pdf = pdf

    @classmethod
    def open(cls, pdf_bytes: bytes) -> FitzContentReader:
        """
        Open PDF bytes.

        Raises:
            PdfLoadError: If the bytes are not a readable PDF.
        """
        try:
            doc = fitz.open(stream=pdf_bytes, filetype="pdf")
        except (RuntimeError, ValueError) as e:
            raise PdfLoadError(f"Failed to open PDF: {e}", cause=e) from e

        if doc.needs_pass:
            doc.close()
            raise PdfLoadError("PDF is password protected")

        try:
            pdf = PdfReader(io.BytesIO(pdf_bytes))
        except (PyPdfError, ValueError) as e:
            doc.close()
            raise PdfLoadError(f"Failed to read PDF structure: {e}", cause=e) from e

        return cls(doc, pdf)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        self.doc.close()

    @property
    def page_count(self) -> int:
        return self.doc.page_count

    def load_page(self, page_number: int) -> PageContent:
        """Load the content of a 1-based page."""
        page = self.doc[page_number - 1]
        # PDF space to the rotated, top-left-origin page
        viewport = page.transformation_matrix * page.rotation_matrix

        operators: list[Operator] = []
        registry: dict[str, Optional[int]] = {}
        pdf_page = self.pdf.pages[page_number - 1]
        try:
            contents = pdf_page.get_contents()
            if contents is not None:
                self._walk(
                    contents.operations,
                    _inherited(pdf_page, "/Resources"),
                    "",
                    operators,
                    registry,
                    depth=0,
                )
        except PyPdfError as e:
            raise PdfLoadError(
                f"Failed to read content stream of page {page_number}: {e}",
                cause=e,
            ) from e

        return PageContent(
            page_number=page_number,
            width=page.rect.width,
            height=page.rect.height,
            viewport=viewport,
            text_runs=self._text_runs(page, viewport),
            operators=operators,
            resolve_named_object=partial(self._resolve_image, registry),
        )

    # ─── Text Runs ───────────────────────────────────────────────────────────

    def _text_runs(self, page: fitz.Page, viewport: fitz.Matrix) -> list[TextRun]:
        """
        One TextRun per PyMuPDF span.

        Spans come in unrotated page space. They are turned with the page
        rotation and then mapped back through the inverse viewport, so that
        ``compose(viewport, run.transform)`` lands on the span's baseline
        origin on the rotated page.
        """
        rotation = page.rotation_matrix
        inverse = ~fitz.Matrix(viewport)
        runs: list[TextRun] = []

        page_dict = page.get_text("dict")
        for block in page_dict.get("blocks", []):
            if block.get("type") != 0:  # Text
                continue
            for line in block.get("lines", []):
                dx, dy = line.get("dir", (1.0, 0.0))
                for span in line.get("spans", []):
                    text = span.get("text", "")
                    if not text.strip():
                        continue

                    size = float(span.get("size", 0.0))
                    ox, oy = span["origin"]
                    x0, y0, x1, y1 = span["bbox"]

                    # Baseline direction (dx, dy), up vector (dy, -dx)
                    span_matrix = fitz.Matrix(
                        size * dx, size * dy, size * dy, -size * dx, ox, oy
                    )
                    width = abs((x1 - x0) * dx + (y1 - y0) * dy)

                    runs.append(TextRun(
                        text=text,
                        transform=span_matrix * rotation * inverse,
                        width=width,
                        height_hint=size,
                    ))

        return runs

    # ─── Operator Stream ─────────────────────────────────────────────────────

    def _walk(
        self,
        operations: list,
        resources: Any,
        prefix: str,
        out: list[Operator],
        registry: dict[str, Optional[int]],
        depth: int,
    ):
        xobjects = _resolve(resources.get("/XObject")) if resources else None

        for operands, operator in operations:
            if operator == b"q":
                out.append(Operator.save())

            elif operator == b"Q":
                out.append(Operator.restore())

            elif operator == b"cm":
                if len(operands) == 6:
                    out.append(Operator.transform(tuple(float(v) for v in operands)))

            elif operator == b"Do":
                if not operands or xobjects is None:
                    continue
                name = str(operands[0])
                ref = xobjects.raw_get(name) if name in xobjects else None
                if ref is None:
                    logger.debug(f"XObject {name} missing from resources")
                    continue
                xobj = _resolve(ref)
                subtype = xobj.get("/Subtype")

                if subtype == "/Image" and not _flag(xobj, "/ImageMask"):
                    key = f"{prefix}{name}"
                    registry[key] = ref.idnum if isinstance(ref, IndirectObject) else None
                    out.append(Operator.paint_image(key))

                elif subtype == "/Image":
                    logger.debug(f"Skipping stencil mask {prefix}{name}")

                elif subtype == "/Form" and depth < MAX_FORM_DEPTH:
                    matrix = _resolve(xobj.get("/Matrix"))
                    form_ops = ContentStream(xobj, self.pdf).operations
                    out.append(Operator.save())
                    if matrix is not None and len(matrix) == 6:
                        out.append(Operator.transform(tuple(float(v) for v in matrix)))
                    self._walk(
                        form_ops,
                        _resolve(xobj.get("/Resources")) or resources,
                        f"{prefix}{name}/",
                        out,
                        registry,
                        depth + 1,
                    )
                    out.append(Operator.restore())

            elif operator == b"INLINE IMAGE":
                out.append(Operator.paint_inline_image(_decode_inline_image(operands)))

    # ─── Image Objects ───────────────────────────────────────────────────────

    def _resolve_image(
        self, registry: dict[str, Optional[int]], name: str
    ) -> Optional[RawImage]:
        """Decode a registered image XObject, or None if it cannot be read."""
        xref = registry.get(name)
        if not xref:
            return None

        try:
            pix = fitz.Pixmap(self.doc, xref)
            if pix.n - pix.alpha == 0:
                logger.debug(f"Image {name} (xref {xref}) has no colour channels")
                return None
            if pix.colorspace is not None and pix.colorspace.n not in (1, 3):
                pix = fitz.Pixmap(fitz.csRGB, pix)
        except (RuntimeError, ValueError) as e:
            logger.debug(f"Image {name} (xref {xref}) could not be decoded: {e}")
            return None

        return RawImage(
            width=pix.width,
            height=pix.height,
            data=bytes(pix.samples),
            channels=pix.n,
            alpha=bool(pix.alpha),
        )


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _resolve(obj: Any) -> Any:
    if isinstance(obj, IndirectObject):
        return obj.get_object()
    return obj


def _flag(node: Any, key: str) -> bool:
    value = _resolve(node.get(key))
    return bool(getattr(value, "value", value))


def _setting(settings: Any, *keys: str) -> Any:
    for key in keys:
        if key in settings:
            return _resolve(settings[key])
    return None


def _decode_inline_image(operands: Any) -> Optional[RawImage]:
    """
    Decode an 8-bit inline image (unfiltered or Flate-compressed).
    Anything else yields None and is skipped by the extractor.
    """
    if not isinstance(operands, dict):
        return None
    settings = operands.get("settings") or {}
    data = operands.get("data") or b""

    width = _setting(settings, "/W", "/Width")
    height = _setting(settings, "/H", "/Height")
    bpc = _setting(settings, "/BPC", "/BitsPerComponent")
    colorspace = _setting(settings, "/CS", "/ColorSpace")
    filters = _setting(settings, "/F", "/Filter")

    channels = _INLINE_COLORSPACES.get(str(colorspace)) if colorspace else None
    if not width or not height or channels is None or int(bpc or 0) != 8:
        return None

    if filters:
        names = [str(f) for f in filters] if isinstance(filters, list) else [str(filters)]
        if any(n not in _FLATE_FILTERS for n in names):
            return None
        parms = _setting(settings, "/DP", "/DecodeParms")
        try:
            for _ in names:
                data = FlateDecode.decode(data, parms)
        except (PyPdfError, ValueError, zlib.error) as e:
            logger.debug(f"Inline image could not be inflated: {e}")
            return None

    width, height = int(width), int(height)
    expected = width * height * channels
    if len(data) < expected:
        return None

    return RawImage(
        width=width,
        height=height,
        data=bytes(data[:expected]),
        channels=channels,
        alpha=False,
    )


def _inherited(node: Any, key: str) -> Any:
    """Look up a page attribute, following /Parent for inherited values."""
    depth = 0
    while node is not None and depth < 32:
        value = node.get(key)
        if value is not None:
            return _resolve(value)
        node = _resolve(node.get("/Parent"))
        depth += 1
    return None
