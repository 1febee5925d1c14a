"""Where decoded images go once a generation succeeds."""

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from PIL import Image, UnidentifiedImageError

from .errors import DecodeError
from .storageservice.storageservice import ImageStorageService

logger = logging.getLogger(__name__)


class ResultSink(ABC):
    """Abstract collaborator that stores and displays a generated image.

    The component calls ``present`` exactly once per successful decode, after
    ``persist`` succeeded or was skipped.
    """

    @abstractmethod
    def persist(self, data: bytes, path: Path) -> Path:
        """Write the image bytes to ``path``. Raises StorageError on failure."""

    @abstractmethod
    def present(self, data: bytes) -> None:
        """Hand the image to whatever displays it."""


@dataclass(frozen=True)
class PresentedImage:
    data: bytes
    width: int
    height: int


class ImageResultSink(ResultSink):
    """Persists through :class:`ImageStorageService` and keeps the current image in memory."""

    def __init__(self, storage: ImageStorageService) -> None:
        self.storage = storage
        self.current: Optional[PresentedImage] = None
        self._presenters: List[Callable[[PresentedImage], None]] = []

    def add_presenter(self, presenter: Callable[[PresentedImage], None]) -> None:
        self._presenters.append(presenter)

    def persist(self, data: bytes, path: Path) -> Path:
        return self.storage.persist(data, path)

    def present(self, data: bytes) -> None:
        try:
            with Image.open(io.BytesIO(data)) as image:
                width, height = image.size
        except (UnidentifiedImageError, OSError) as exc:
            raise DecodeError(f"Generated image could not be loaded: {exc}") from exc

        self.current = PresentedImage(data=data, width=width, height=height)
        logger.info("Presenting %dx%d image", width, height)
        for presenter in self._presenters:
            presenter(self.current)
