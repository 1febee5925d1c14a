from __future__ import annotations

import base64
import binascii
import io
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from PIL import Image, UnidentifiedImageError
from pydantic import ValidationError as PydanticValidationError

from ..errors import DecodeError, EmptyResultError
from ..schemas import Img2ImgResponse
from ..utils import truncate_for_log

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    image_bytes: bytes
    used_seed: Optional[int] = None
    info: Dict[str, Any] = field(default_factory=dict)


def decode_img2img_response(raw: Union[str, bytes]) -> GenerationResult:
    """
    Parse an img2img response into a :class:`GenerationResult`.

    Only the first image is kept. The seed is read from the ``info``
    document when the server sends one; otherwise it stays unknown.

    Raises:
        DecodeError: the body is not the expected JSON, or the first image is not
            base64 or not an image Pillow can read.
        EmptyResultError: the server answered without any image.
    """
    try:
        response = Img2ImgResponse.model_validate_json(raw)
    except PydanticValidationError as exc:
        raise DecodeError(f"Malformed img2img response: {exc}") from exc

    if not response.images:
        raise EmptyResultError("No image was returned by the server. Verify that the server is correctly set up.")

    try:
        image_bytes = base64.b64decode(response.images[0], validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Image payload is not valid base64: {exc}") from exc
    _ensure_readable_image(image_bytes)

    info = _parse_info(response.info)
    return GenerationResult(image_bytes=image_bytes, used_seed=_seed_from_info(info), info=info)


def _ensure_readable_image(image_bytes: bytes) -> None:
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise DecodeError(f"Image payload is not a readable image: {exc}") from exc


def _parse_info(info: Union[str, Dict[str, Any], None]) -> Dict[str, Any]:
    if not info:
        return {}
    if isinstance(info, dict):
        return info
    try:
        parsed = json.loads(info)
    except json.JSONDecodeError as exc:
        logger.warning("Ignoring unparseable generation info (%s): %s", exc, truncate_for_log(info))
        return {}
    if not isinstance(parsed, dict):
        logger.warning("Ignoring generation info that is not an object: %s", truncate_for_log(info))
        return {}
    return parsed


def _seed_from_info(info: Dict[str, Any]) -> Optional[int]:
    seed = info.get("seed")
    if seed is None or isinstance(seed, bool):
        return None
    try:
        return int(seed)
    except (TypeError, ValueError):
        logger.warning("Server reported a non-integer seed: %r", seed)
        return None
