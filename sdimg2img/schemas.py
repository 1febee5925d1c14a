"""Pydantic models shared by the client, the service and the FastAPI endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class GenerationRequest(BaseModel):
    """Parameters of one img2img invocation."""

    model_config = ConfigDict(frozen=True)

    init_image: bytes = Field(..., description="Encoded source image (PNG or any format Pillow reads)")
    prompt: str = Field(..., description="Text prompt")
    negative_prompt: str = ""
    steps: int = 50
    cfg_scale: float = 7.0
    width: int = 512
    height: int = 512
    seed: int = Field(default=-1, description="-1 lets the server pick a seed")
    sampler_name: Optional[str] = None
    tiling: bool = False
    model: Optional[str] = Field(default=None, description="Checkpoint to select before generating")


# ---- Wire format of the Stable Diffusion API ----
class Img2ImgPayload(BaseModel):
    init_images: List[str]
    prompt: str
    negative_prompt: str
    steps: int
    cfg_scale: float
    width: int
    height: int
    seed: int
    tiling: bool
    sampler_name: str


class Img2ImgResponse(BaseModel):
    images: Optional[List[str]] = None
    info: Union[str, Dict[str, Any], None] = None


class ProgressInfo(BaseModel):
    progress: float = 0.0
    eta_relative: float = 0.0
    state: Dict[str, Any] = Field(default_factory=dict)
    textinfo: Optional[str] = None
# ------------------------------------------------


class Img2ImgApiRequest(BaseModel):
    initImage: str = Field(..., description="Base64-encoded source image")
    prompt: str = Field(..., description="Text prompt for image generation")
    negativePrompt: Optional[str] = None
    steps: Optional[int] = None
    cfgScale: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    seed: Optional[int] = None
    sampler: Optional[str] = None
    tiling: bool = False
    model: Optional[str] = None


class Img2ImgApiResponse(BaseModel):
    identifier: str = Field(..., description="File stem of the persisted image")
    seed: Optional[int] = Field(None, description="Seed the server used, when reported")
    path: Optional[str] = Field(None, description="Where the image was written, if persisted")
    width: int
    height: int
    image: str = Field(..., description="Base64-encoded PNG image")


class StatusResponse(BaseModel):
    state: str
    identifier: str
    generatedSeed: Optional[int]
    lastError: Optional[str]


class CancelResponse(BaseModel):
    cancelled: bool


class SamplerListResponse(BaseModel):
    samplers: List[str]


class ModelListResponse(BaseModel):
    models: List[str]
