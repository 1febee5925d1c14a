import logging
import re
import threading
from pathlib import Path
from typing import Optional, Union

from ..errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

IMAGES_SUBFOLDER = "SDImages"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class ImageStorageService:
    def __init__(self, output_root: Union[str, Path]):
        self.output_root = Path(output_root)

    @property
    def images_dir(self) -> Path:
        return self.output_root / IMAGES_SUBFOLDER

    # ---------- paths ----------
    def output_path(self, identifier: str) -> Path:
        """Return ``<output_root>/SDImages/<identifier>.png``."""
        if not identifier or not _IDENTIFIER_RE.match(identifier):
            raise ValidationError(f"Invalid image identifier: {identifier!r}")
        return self.images_dir / f"{identifier}.png"

    def prepare_output_path(self, identifier: str) -> Path:
        """Create the output folders and drop any stale image for ``identifier``."""
        path = self.output_path(identifier)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if path.exists():
                path.unlink()
        except OSError as exc:
            raise StorageError(f"Could not prepare output folder {path.parent}: {exc}") from exc
        return path

    # ---------- images ----------
    def persist(self, data: bytes, path: Union[str, Path]) -> Path:
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Error writing image file {path}: {exc}") from exc
        logger.info("Wrote %d bytes to %s", len(data), path)
        return path

    def read(self, identifier: str) -> Optional[bytes]:
        path = self.output_path(identifier)
        if not path.exists():
            return None
        return path.read_bytes()


_SERVICE: Optional[ImageStorageService] = None
_SERVICE_LOCK = threading.Lock()

def get_storage_service() -> ImageStorageService:
    """Return a singleton ImageStorageService instance.

    The instance is created lazily on first call and is protected by a
    module-level lock to be safe in multi-threaded contexts. The output root
    comes from the configured ``output_folder``.
    """
    global _SERVICE
    if _SERVICE is not None:
        return _SERVICE
    with _SERVICE_LOCK:
        if _SERVICE is None:
            from ..config import get_settings
            _SERVICE = ImageStorageService(get_settings().output_folder)
    return _SERVICE
