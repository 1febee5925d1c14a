from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional

from ..schemas import ProgressInfo

# Define an abstract interface for image generation clients so the service can
# run against a real server or a test double interchangeably.


class ImageGenerationClient(ABC):
    """Abstract interface for an img2img transport client.

    ``submit`` returns immediately with a handle; completion is observed
    through ``wait_for_completion``. The remaining methods are blocking and
    meant to be called from a worker thread.
    """

    @abstractmethod
    def submit(self, url: str, body: str, auth_header: Optional[str] = None) -> Any:
        """Start one POST and return a handle tracking it."""

    @abstractmethod
    async def wait_for_completion(
        self,
        handle: Any,
        poll_interval: float = 0.5,
        on_progress: Optional[Callable[[Any], Awaitable[None]]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """Suspend until the handle reaches a terminal status."""

    @abstractmethod
    def auth_header(self) -> Optional[str]:
        """Return the Authorization header value, or None when auth is off."""

    @abstractmethod
    def list_samplers(self) -> List[str]:
        """Return the sampler names known to the server."""

    @abstractmethod
    def list_models(self) -> List[str]:
        """Return the checkpoint names known to the server."""

    @abstractmethod
    def set_model(self, model_name: str) -> None:
        """Select the checkpoint used by subsequent generations."""

    @abstractmethod
    def get_progress(self) -> ProgressInfo:
        """Return the server's progress on the running job."""
