"""Img2img component: drives one generation from request to presented image."""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from functools import lru_cache
from pathlib import Path
from typing import Callable, Optional

from starlette.concurrency import run_in_threadpool

from .aiservices.imagegenerationclient import ImageGenerationClient
from .aiservices.requestbuilder import build_request_body
from .aiservices.responsedecoder import GenerationResult, decode_img2img_response
from .aiservices.stablediffusionclient import GenerationHandle, StableDiffusionClient
from .config import Settings, get_settings
from .errors import BusyError, Img2ImgError
from .presentation import ImageResultSink, ResultSink
from .schemas import GenerationRequest, ProgressInfo
from .storageservice.storageservice import ImageStorageService, get_storage_service
from .utils import join_url

logger = logging.getLogger(__name__)

ProgressObserver = Callable[[ProgressInfo], None]


class GenerationState(str, enum.Enum):
    IDLE = "idle"
    BUILDING = "building"
    SUBMITTING = "submitting"
    POLLING = "polling"
    DECODING = "decoding"
    PRESENTING = "presenting"
    FAILED = "failed"


class Img2ImgService:
    """Runs img2img generations one at a time.

    A call made while a generation is in flight raises :class:`BusyError`
    and leaves the running one untouched. The state returns to ``IDLE`` on
    every exit path.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: ImageGenerationClient | None = None,
        storage: ImageStorageService | None = None,
        sink: ResultSink | None = None,
        identifier: str | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.storage = storage or ImageStorageService(self.settings.output_folder)
        self._client = client or StableDiffusionClient(self.settings)
        self.sink = sink or ImageResultSink(self.storage)
        self.identifier = identifier or str(uuid.uuid4())

        self._state = GenerationState.IDLE
        self._cancel_event: Optional[asyncio.Event] = None
        self.generated_seed: Optional[int] = None
        self.last_error: Optional[str] = None
        self.output_path: Optional[Path] = None

    @property
    def state(self) -> GenerationState:
        return self._state

    @property
    def client(self) -> ImageGenerationClient:
        return self._client

    # ------------------------------------------------------------------
    # Request defaults
    # ------------------------------------------------------------------
    def make_request(self, init_image: bytes, prompt: str, **overrides) -> GenerationRequest:
        """Build a request from the configured defaults; ``None`` overrides are ignored."""
        values = {
            "init_image": init_image,
            "prompt": prompt,
            "negative_prompt": self.settings.default_negative_prompt,
            "steps": self.settings.default_steps,
            "cfg_scale": self.settings.default_cfg_scale,
            "width": self.settings.default_width,
            "height": self.settings.default_height,
            "seed": self.settings.default_seed,
            "sampler_name": self.settings.default_sampler,
            "model": self.settings.model,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return GenerationRequest(**values)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------
    async def generate(
        self,
        request: GenerationRequest,
        on_progress: Optional[ProgressObserver] = None,
    ) -> GenerationResult:
        if self._state is not GenerationState.IDLE:
            logger.warning("Generate called while %s; ignoring the new request", self._state.value)
            raise BusyError(f"A generation is already {self._state.value}.")

        self._state = GenerationState.BUILDING
        self._cancel_event = asyncio.Event()
        try:
            return await self._run(request, on_progress)
        except Img2ImgError as exc:
            self._state = GenerationState.FAILED
            self.last_error = str(exc)
            logger.error("Generation failed: %s", exc)
            raise
        except Exception as exc:
            self._state = GenerationState.FAILED
            self.last_error = str(exc)
            logger.exception("Unexpected error during generation")
            raise
        finally:
            self._cancel_event = None
            self._state = GenerationState.IDLE

    def cancel(self) -> bool:
        """Ask the in-flight generation to stop. Returns False when nothing is running."""
        if self._cancel_event is None:
            return False
        logger.info("Cancelling generation %s", self.identifier)
        self._cancel_event.set()
        return True

    async def _run(self, request: GenerationRequest, on_progress: Optional[ProgressObserver]) -> GenerationResult:
        self.last_error = None
        self.output_path = None
        output_path = await run_in_threadpool(self.storage.prepare_output_path, self.identifier)
        body = await run_in_threadpool(build_request_body, request, self.settings.default_sampler)

        self._state = GenerationState.SUBMITTING
        if request.model:
            await run_in_threadpool(self._client.set_model, request.model)

        url = join_url(self.settings.server_url, self.settings.img2img_api)
        handle = self._client.submit(url, body, self._client.auth_header())

        self._state = GenerationState.POLLING
        await self._client.wait_for_completion(
            handle,
            poll_interval=self.settings.poll_interval,
            on_progress=self._progress_reporter(on_progress),
            cancel_event=self._cancel_event,
        )
        handle.raise_for_status()

        self._state = GenerationState.DECODING
        result = await run_in_threadpool(decode_img2img_response, handle.raw_response_body)

        self._state = GenerationState.PRESENTING
        if self.settings.persist_images:
            self.output_path = await run_in_threadpool(self.sink.persist, result.image_bytes, output_path)
        self.sink.present(result.image_bytes)

        if result.used_seed is not None:
            self.generated_seed = result.used_seed
        return result

    def _progress_reporter(self, observer: Optional[ProgressObserver]):
        if not self.settings.report_progress:
            return None

        async def report(handle: GenerationHandle) -> None:
            try:
                progress = await run_in_threadpool(self._client.get_progress)
            except Img2ImgError as exc:
                logger.warning("Progress check failed: %s", exc)
                return
            if handle.is_terminal:
                return
            logger.debug("Generation progress %.0f%% (eta %.1fs)", progress.progress * 100, progress.eta_relative)
            if observer is not None:
                observer(progress)

        return report


@lru_cache
def get_img2img_service() -> Img2ImgService:
    return Img2ImgService(get_settings(), storage=get_storage_service())
