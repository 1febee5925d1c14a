"""FastAPI entry point exposing the img2img component over HTTP."""

from __future__ import annotations

import base64
import binascii
import logging

from fastapi import Depends, FastAPI, HTTPException, Response, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from .config import get_settings
from .errors import (
    BusyError,
    DecodeError,
    EmptyResultError,
    GenerationCancelledError,
    StorageError,
    TransportError,
    ValidationError,
)
from .presentation import ImageResultSink
from .schemas import (
    CancelResponse,
    Img2ImgApiRequest,
    Img2ImgApiResponse,
    ModelListResponse,
    SamplerListResponse,
    StatusResponse,
)
from .service import Img2ImgService, get_img2img_service

logger = logging.getLogger(__name__)


def _decode_init_image(encoded: str) -> bytes:
    # Accept data URLs as sent by browsers.
    if encoded.startswith("data:") and "," in encoded:
        encoded = encoded.split(",", 1)[1]
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="initImage must be base64-encoded image data",
        ) from exc


def _transport_detail(exc: TransportError) -> str:
    detail = str(exc)
    if exc.hint:
        detail = f"{detail} {exc.hint}"
    return detail


app = FastAPI(title="sdimg2img", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", summary="Health Check Endpoint")
async def healthcheck():
    settings = get_settings()
    return {
        "status": "ok",
        "serverUrl": settings.server_url,
        "model": settings.model,
    }


@app.get(
    "/status",
    response_model=StatusResponse,
    summary="Report the state of the img2img component",
)
async def generation_status(service: Img2ImgService = Depends(get_img2img_service)):
    return StatusResponse(
        state=service.state.value,
        identifier=service.identifier,
        generatedSeed=service.generated_seed,
        lastError=service.last_error,
    )


@app.post(
    "/img2img",
    response_model=Img2ImgApiResponse,
    summary="Generate an image from a source image and a prompt",
)
async def img2img(
    payload: Img2ImgApiRequest,
    service: Img2ImgService = Depends(get_img2img_service),
):
    request = service.make_request(
        _decode_init_image(payload.initImage),
        payload.prompt,
        negative_prompt=payload.negativePrompt,
        steps=payload.steps,
        cfg_scale=payload.cfgScale,
        width=payload.width,
        height=payload.height,
        seed=payload.seed,
        sampler_name=payload.sampler,
        tiling=payload.tiling,
        model=payload.model,
    )

    try:
        result = await service.generate(request)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except (BusyError, GenerationCancelledError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except TransportError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=_transport_detail(exc)) from exc
    except (EmptyResultError, DecodeError) as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    presented = service.sink.current if isinstance(service.sink, ImageResultSink) else None
    return Img2ImgApiResponse(
        identifier=service.identifier,
        seed=result.used_seed,
        path=str(service.output_path) if service.output_path else None,
        width=presented.width if presented else 0,
        height=presented.height if presented else 0,
        image=base64.b64encode(result.image_bytes).decode("ascii"),
    )


@app.post(
    "/img2img/cancel",
    response_model=CancelResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Cancel the generation in flight, if any",
)
async def cancel_img2img(service: Img2ImgService = Depends(get_img2img_service)):
    return CancelResponse(cancelled=service.cancel())


@app.get(
    "/image",
    summary="Return the image currently presented by the component",
    responses={200: {"content": {"image/png": {}}}},
)
async def current_image(service: Img2ImgService = Depends(get_img2img_service)):
    presented = service.sink.current if isinstance(service.sink, ImageResultSink) else None
    if presented is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No image has been generated yet",
        )
    return Response(content=presented.data, media_type="image/png")


@app.get(
    "/samplers",
    response_model=SamplerListResponse,
    summary="List the samplers offered by the Stable Diffusion server",
)
async def samplers(service: Img2ImgService = Depends(get_img2img_service)):
    try:
        names = await run_in_threadpool(service.client.list_samplers)
    except TransportError as exc:
        logger.error("Could not list samplers: %s", exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=_transport_detail(exc)) from exc
    return SamplerListResponse(samplers=names)


@app.get(
    "/models",
    response_model=ModelListResponse,
    summary="List the checkpoints offered by the Stable Diffusion server",
)
async def models(service: Img2ImgService = Depends(get_img2img_service)):
    try:
        names = await run_in_threadpool(service.client.list_models)
    except TransportError as exc:
        logger.error("Could not list models: %s", exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=_transport_detail(exc)) from exc
    return ModelListResponse(models=names)


__all__ = ["app"]


if __name__ == "__main__":  # pragma: no cover - convenience entry point
    import uvicorn

    uvicorn.run("sdimg2img.main:app", host="0.0.0.0", port=8000, reload=True)
