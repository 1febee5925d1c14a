# aiservices/stablediffusionclient.py
from __future__ import annotations

import asyncio
import enum
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Awaitable, Callable, Dict, List, Optional

import requests
from pydantic import ValidationError as PydanticValidationError

from ..config import Settings, get_settings
from ..errors import GenerationCancelledError, TransportError
from ..schemas import ProgressInfo
from ..utils import build_basic_auth_header, join_url, truncate_for_log
from .imagegenerationclient import ImageGenerationClient

logger = logging.getLogger(__name__)

METHOD_NOT_ALLOWED_HINT = (
    "405 Method Not Allowed: make sure the server was launched with the --api flag "
    "and that no firewall or proxy in front of it rejects POST requests "
    "(common with hosted GPU pods)."
)


class GenerationStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class GenerationHandle:
    """In-flight state of one img2img POST."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.status = GenerationStatus.PENDING
        self.http_status_code: Optional[int] = None
        self.raw_response_body: str = ""
        self.error: Optional[str] = None
        self.hint: Optional[str] = None
        self.future: Optional[Future] = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not GenerationStatus.PENDING

    def done(self) -> bool:
        return self.future is not None and self.future.done()

    def raise_for_status(self) -> None:
        if self.status is GenerationStatus.FAILED:
            raise TransportError(
                f"Request to {self.url} failed: {self.error}",
                status_code=self.http_status_code,
                body=self.raw_response_body,
                hint=self.hint,
            )


class StableDiffusionClient(ImageGenerationClient):
    """
    Talks to an AUTOMATIC1111-compatible ``sdapi/v1`` server.

    The img2img POST runs on a worker thread so callers can keep reporting
    progress while the server works. Catalogue, option and progress calls are
    plain blocking requests.

    The POST worker and the auxiliary calls each use their own session from
    ``session_factory``. Every POST gets its own worker thread; a cancelled
    POST keeps its thread until the server answers.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: Callable[[], requests.Session] = requests.Session,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._session = session_factory()
        self._aux_session = session_factory()
        self._executor = executor or ThreadPoolExecutor(thread_name_prefix="img2img")

    # --- Authentication -------------------------------------------------------

    def auth_header(self) -> Optional[str]:
        if not self.settings.use_auth:
            return None
        return build_basic_auth_header(self.settings.user, self.settings.password.get_secret_value())

    def _headers(self, auth_header: Optional[str] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if auth_header:
            headers["Authorization"] = auth_header
        return headers

    # --- Generation -----------------------------------------------------------

    def submit(self, url: str, body: str, auth_header: Optional[str] = None) -> GenerationHandle:
        logger.info("Sending request to: %s", url)
        logger.info("Sending JSON data (truncated): %s", truncate_for_log(body))

        handle = GenerationHandle(url)
        handle.future = self._executor.submit(self._send, handle, body, self._headers(auth_header))
        return handle

    def _send(self, handle: GenerationHandle, body: str, headers: Dict[str, str]) -> GenerationHandle:
        try:
            response = self._session.post(
                handle.url,
                data=body.encode("utf-8"),
                headers=headers,
                timeout=self.settings.request_timeout,
            )
        except requests.RequestException as exc:
            handle.error = str(exc)
            handle.status = GenerationStatus.FAILED
            return handle

        handle.http_status_code = response.status_code
        handle.raw_response_body = response.text
        if 200 <= response.status_code < 300:
            handle.status = GenerationStatus.SUCCEEDED
        else:
            handle.error = f"HTTP {response.status_code}"
            if response.status_code == 405:
                handle.hint = METHOD_NOT_ALLOWED_HINT
            handle.status = GenerationStatus.FAILED
        return handle

    async def wait_for_completion(
        self,
        handle: GenerationHandle,
        poll_interval: float = 0.5,
        on_progress: Optional[Callable[[GenerationHandle], Awaitable[None]]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> GenerationHandle:
        """
        Suspend until the POST behind ``handle`` finishes.

        Wakes up every ``poll_interval`` seconds to check ``cancel_event`` and
        to start ``on_progress``. The observer runs as its own task and is
        never awaited by the loop: a new one starts only once the previous one
        has finished, and one still running when the POST completes is
        cancelled. Failures are logged here and left on the handle; call
        :meth:`GenerationHandle.raise_for_status` to surface them.
        """
        completion = asyncio.wrap_future(handle.future)
        progress_task: Optional[asyncio.Future] = None
        try:
            while not completion.done():
                if cancel_event is not None and cancel_event.is_set():
                    # The worker thread cannot be interrupted; only stop listening to it.
                    completion.cancel()
                    raise GenerationCancelledError(f"Generation cancelled while waiting on {handle.url}")
                if on_progress is not None and (progress_task is None or progress_task.done()):
                    if progress_task is not None:
                        progress_task.result()
                    progress_task = asyncio.ensure_future(on_progress(handle))
                await asyncio.wait({completion}, timeout=poll_interval)
        finally:
            if progress_task is not None:
                _settle_progress_task(progress_task)

        # Re-raises anything unexpected from the worker thread.
        completion.result()

        if handle.status is GenerationStatus.FAILED:
            logger.error("Request error: %s", handle.error)
            logger.error("Response code: %s", handle.http_status_code)
            logger.error("Response: %s", truncate_for_log(handle.raw_response_body))
            if handle.hint:
                logger.error(handle.hint)
        else:
            logger.info("Response received: %s", truncate_for_log(handle.raw_response_body))
        return handle

    # --- Server catalogue & options --------------------------------------------

    def list_samplers(self) -> List[str]:
        data = self._get_json(self.settings.samplers_api)
        return [item["name"] for item in data if isinstance(item, dict) and item.get("name")]

    def list_models(self) -> List[str]:
        data = self._get_json(self.settings.models_api)
        names: List[str] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            name = item.get("model_name") or item.get("title")
            if name:
                names.append(name)
        return names

    def set_model(self, model_name: str) -> None:
        url = join_url(self.settings.server_url, self.settings.options_api)
        logger.info("Selecting model %s", model_name)
        try:
            response = self._aux_session.post(
                url,
                json={"sd_model_checkpoint": model_name},
                headers=self._headers(self.auth_header()),
                timeout=self.settings.request_timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"Could not select model {model_name}: {exc}") from exc
        self._check(response, url)

    def get_progress(self) -> ProgressInfo:
        data = self._get_json(
            self.settings.progress_api,
            params={"skip_current_image": "true"},
            timeout=self.settings.progress_timeout,
        )
        try:
            return ProgressInfo.model_validate(data)
        except PydanticValidationError as exc:
            raise TransportError(f"Unexpected progress payload: {exc}") from exc

    # --- Internals ------------------------------------------------------------

    def _get_json(self, path: str, params: Optional[Dict[str, str]] = None, timeout: Optional[float] = None):
        url = join_url(self.settings.server_url, path)
        try:
            response = self._aux_session.get(
                url,
                params=params,
                headers=self._headers(self.auth_header()),
                timeout=timeout or self.settings.request_timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"Request to {url} failed: {exc}") from exc
        self._check(response, url)
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(
                f"Response from {url} is not JSON",
                status_code=response.status_code,
                body=response.text,
            ) from exc

    @staticmethod
    def _check(response, url: str) -> None:
        if 200 <= response.status_code < 300:
            return
        raise TransportError(
            f"Request to {url} failed with status {response.status_code}: {truncate_for_log(response.text)}",
            status_code=response.status_code,
            body=response.text,
            hint=METHOD_NOT_ALLOWED_HINT if response.status_code == 405 else None,
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)
        self._session.close()
        self._aux_session.close()


def _settle_progress_task(task: asyncio.Future) -> None:
    if not task.done():
        task.cancel()
    elif not task.cancelled() and task.exception() is not None:
        logger.warning("Progress observer failed: %s", task.exception())
