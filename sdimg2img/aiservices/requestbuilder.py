"""Turn a :class:`GenerationRequest` into the JSON body of an img2img call."""

from __future__ import annotations

import base64
import io

from PIL import Image, UnidentifiedImageError

from ..errors import ValidationError
from ..schemas import GenerationRequest, Img2ImgPayload
from ..utils import clamp_dimension


def encode_init_image(data: bytes) -> str:
    """Return the source image as base64 PNG.

    PNG input is forwarded untouched; any other format Pillow can read is
    re-encoded to PNG first.
    """
    if not data:
        raise ValidationError("Input image is not set.")

    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            if image.format == "PNG":
                png_bytes = data
            else:
                buffer = io.BytesIO()
                image.save(buffer, format="PNG")
                png_bytes = buffer.getvalue()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationError(f"Input image isn't readable: {exc}") from exc

    return base64.b64encode(png_bytes).decode("ascii")


def build_payload(request: GenerationRequest, default_sampler: str) -> Img2ImgPayload:
    if not request.prompt or not request.prompt.strip():
        raise ValidationError("Prompt must not be empty.")
    if request.steps <= 0:
        raise ValidationError(f"steps must be positive, got {request.steps}.")
    if request.cfg_scale < 0:
        raise ValidationError(f"cfg_scale must not be negative, got {request.cfg_scale}.")

    return Img2ImgPayload(
        init_images=[encode_init_image(request.init_image)],
        prompt=request.prompt,
        negative_prompt=request.negative_prompt,
        steps=request.steps,
        cfg_scale=request.cfg_scale,
        width=clamp_dimension(request.width),
        height=clamp_dimension(request.height),
        seed=request.seed,
        tiling=request.tiling,
        sampler_name=request.sampler_name or default_sampler,
    )


def build_request_body(request: GenerationRequest, default_sampler: str) -> str:
    """Serialize the request for ``POST /sdapi/v1/img2img``."""
    return build_payload(request, default_sampler).model_dump_json()
