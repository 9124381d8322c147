"""
PNG Encoder
===========
Turns a raw pixel buffer into PNG bytes using PyMuPDF pixmaps.
"""

from __future__ import annotations

import fitz  # PyMuPDF

from .content import RawImage
from .exceptions import EncodingError

_COLORSPACES = {
    1: fitz.csGRAY,
    3: fitz.csRGB,
    4: fitz.csCMYK,
}


class PngEncoder:
    """Raster encoder collaborator: RawImage -> PNG bytes."""

    content_type = "image/png"

    def encode(self, image: RawImage) -> bytes:
        """
        Encode a raw image as PNG.

        Raises:
            EncodingError: If the buffer does not match the declared
                dimensions or PyMuPDF cannot build the pixmap.
        """
        color_channels = image.channels - (1 if image.alpha else 0)
        colorspace = _COLORSPACES.get(color_channels)
        if colorspace is None:
            raise EncodingError(
                image.width, image.height,
                cause=ValueError(f"unsupported channel count {image.channels}"),
            )

        expected = image.width * image.height * image.channels
        if len(image.data) != expected:
            raise EncodingError(
                image.width, image.height,
                cause=ValueError(
                    f"expected {expected} bytes, got {len(image.data)}"
                ),
            )

        try:
            pix = fitz.Pixmap(
                colorspace, image.width, image.height,
                bytes(image.data), image.alpha,
            )
            if color_channels == 4:
                # PNG has no CMYK mode
                pix = fitz.Pixmap(fitz.csRGB, pix)
            return pix.tobytes("png")
        except (RuntimeError, ValueError) as e:
            raise EncodingError(image.width, image.height, cause=e) from e
