from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the img2img client."""

    #----------------------------------------------------------
    # Stable Diffusion server
    #----------------------------------------------------------
    server_url: str = Field(
        default="http://127.0.0.1:7860",
        description="Base URL of the Stable-Diffusion-compatible server.",
    )
    img2img_api: str = Field(
        default="/sdapi/v1/img2img",
        description="Path of the image-to-image endpoint, appended to server_url.",
    )
    options_api: str = Field(
        default="/sdapi/v1/options",
        description="Path used to switch the active checkpoint.",
    )
    progress_api: str = Field(
        default="/sdapi/v1/progress",
        description="Path queried while a generation is in flight.",
    )
    samplers_api: str = Field(
        default="/sdapi/v1/samplers",
        description="Path listing the samplers known to the server.",
    )
    models_api: str = Field(
        default="/sdapi/v1/sd-models",
        description="Path listing the checkpoints known to the server.",
    )
    model: Optional[str] = Field(
        default=None,
        description="Checkpoint selected before each generation. Leave unset to keep the server's current model.",
    )

    #----------------------------------------------------------
    # Authentication
    #----------------------------------------------------------
    use_auth: bool = Field(
        default=False,
        description="Send a Basic Authorization header built from user and password.",
    )
    user: str = Field(default="", description="Basic-auth user name.")
    password: SecretStr = Field(default=SecretStr(""), description="Basic-auth password.")

    #----------------------------------------------------------
    # Transport settings
    #----------------------------------------------------------
    poll_interval: float = Field(
        default=0.5,
        gt=0.0,
        description="Seconds between progress checks while a request is in flight.",
    )
    request_timeout: float = Field(
        default=600.0,
        gt=0.0,
        description="Timeout in seconds for the img2img POST.",
    )
    progress_timeout: float = Field(
        default=2.0,
        gt=0.0,
        description="Timeout in seconds for each progress query.",
    )
    report_progress: bool = Field(
        default=True,
        description="Query the progress endpoint on every poll tick.",
    )

    #----------------------------------------------------------
    # Output settings
    #----------------------------------------------------------
    output_folder: str = Field(
        default="output",
        description="Root folder; images are written to <output_folder>/SDImages/<identifier>.png.",
    )
    persist_images: bool = Field(
        default=True,
        description="Disable to present results without writing them to disk.",
    )

    #----------------------------------------------------------
    # Generation defaults
    #----------------------------------------------------------
    default_width: int = Field(default=512, description="Width used when a request does not set one.")
    default_height: int = Field(default=512, description="Height used when a request does not set one.")
    default_steps: int = Field(default=50, gt=0, description="Sampling steps.")
    default_cfg_scale: float = Field(default=7.0, ge=0.0, description="Classifier-free guidance scale.")
    default_seed: int = Field(default=-1, description="Seed, -1 lets the server pick one.")
    default_sampler: str = Field(default="Euler a", description="Sampler used when a request names none.")
    default_negative_prompt: str = Field(default="", description="Negative prompt used when a request sets none.")

    model_config = SettingsConfigDict(
        env_prefix="SDIMG2IMG_",
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
