"""Exceptions raised by the img2img client.

Every error is terminal for the current invocation. Nothing is retried; the
caller decides whether to trigger a new generation.
"""

from __future__ import annotations

from typing import Optional


class Img2ImgError(Exception):
    """Base class for every failure surfaced by the component."""


class ValidationError(Img2ImgError, ValueError):
    """The request was rejected before anything was sent."""


class TransportError(Img2ImgError):
    """The HTTP call failed or returned a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
        hint: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.hint = hint


class EmptyResultError(Img2ImgError):
    """The server answered successfully but returned no image."""


class DecodeError(Img2ImgError):
    """The response was not valid JSON or carried malformed base64."""


class StorageError(Img2ImgError, OSError):
    """The decoded image could not be written to disk."""


class BusyError(Img2ImgError):
    """A generation is already in flight on this component."""


class GenerationCancelledError(Img2ImgError):
    """The in-flight generation was cancelled before it completed."""
