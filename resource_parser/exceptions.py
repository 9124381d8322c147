"""
Exceptions
==========
Error taxonomy for the resource parser.

Everything here is fatal for a parse: the engine lets these propagate and
no partial ParsedResult is returned. Recoverable conditions (missing image
objects, capped pages or diagrams, empty text) never raise.
"""

from __future__ import annotations

from typing import Optional


class ParserError(Exception):
    """Base class for all resource parser errors."""


class PdfLoadError(ParserError):
    """Raised when the PDF bytes cannot be opened by the content reader."""

    def __init__(self, message: str = None, *, cause: Optional[Exception] = None):
        if message is None:
            message = "Failed to load PDF"
        super().__init__(message)
        self.__cause__ = cause


class EncodingError(ParserError):
    """Raised when a raw pixel buffer cannot be encoded as PNG."""

    def __init__(self, width: int, height: int, *, cause: Optional[Exception] = None):
        self.width = width
        self.height = height
        super().__init__(f"Failed to encode {width}x{height} image: {cause}")
        self.__cause__ = cause


class StorageError(ParserError):
    """Raised when an encoded image cannot be persisted."""

    def __init__(self, key: str, message: str = None, *, cause: Optional[Exception] = None):
        self.key = key
        if message is None:
            message = f"Failed to store object: {key}"
        super().__init__(message)
        self.__cause__ = cause


class SourceError(ParserError):
    """Raised when a PDF source (path or URL) cannot be read."""

    def __init__(self, source: str, message: str = None, *, cause: Optional[Exception] = None):
        self.source = source
        if message is None:
            message = f"Failed to read resource: {source}"
        super().__init__(message)
        self.__cause__ = cause
