"""Shared fixtures: a scripted stand-in for ``requests.Session`` and PNG helpers."""

from __future__ import annotations

import base64
import io
import json
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import pytest
from PIL import Image

from sdimg2img.config import Settings

SERVER_URL = "http://sd.local:7860"
IMG2IMG_URL = SERVER_URL + "/sdapi/v1/img2img"
OPTIONS_URL = SERVER_URL + "/sdapi/v1/options"
PROGRESS_URL = SERVER_URL + "/sdapi/v1/progress"
SAMPLERS_URL = SERVER_URL + "/sdapi/v1/samplers"
MODELS_URL = SERVER_URL + "/sdapi/v1/sd-models"


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: Optional[str] = None) -> None:
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)

    def json(self) -> Any:
        return json.loads(self.text)


class FakeSession:
    """Records calls and answers from per-URL scripted responses.

    ``release`` gates every POST: clear it to keep a request in flight.
    ``get_delay`` makes every GET take that many seconds.
    """

    def __init__(self) -> None:
        self.posts: List[Dict[str, Any]] = []
        self.gets: List[Dict[str, Any]] = []
        self.post_responses: Dict[str, Any] = {}
        self.get_responses: Dict[str, Any] = {}
        self.release = threading.Event()
        self.release.set()
        self.get_delay = 0.0

    def post(self, url, data=None, json=None, headers=None, timeout=None):
        self.posts.append({"url": url, "data": data, "json": json, "headers": headers or {}, "timeout": timeout})
        self.release.wait(timeout=5)
        return self._answer(self.post_responses, url)

    def get(self, url, params=None, headers=None, timeout=None):
        self.gets.append({"url": url, "params": params, "headers": headers or {}, "timeout": timeout})
        if self.get_delay:
            time.sleep(self.get_delay)
        return self._answer(self.get_responses, url)

    def close(self) -> None:
        return None

    @staticmethod
    def _answer(responses: Dict[str, Any], url: str):
        answer = responses.get(url)
        if isinstance(answer, Exception):
            raise answer
        if answer is None:
            return FakeResponse(404, text="Not Found")
        return answer


def png_bytes(width: int = 1, height: int = 1, color=(255, 0, 0)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def img2img_response(image: bytes, seed: Optional[int] = 42) -> FakeResponse:
    info = json.dumps({"seed": seed}) if seed is not None else ""
    return FakeResponse(200, {"images": [base64.b64encode(image).decode("ascii")], "info": info})


@pytest.fixture
def fake_session():
    session = FakeSession()
    try:
        yield session
    finally:
        # Let any request still parked in a worker thread finish.
        session.release.set()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        server_url=SERVER_URL,
        output_folder=str(tmp_path / "output"),
        poll_interval=0.01,
        report_progress=False,
    )


@pytest.fixture
def make_png() -> Callable[..., bytes]:
    return png_bytes


@pytest.fixture
def make_img2img_response() -> Callable[..., FakeResponse]:
    return img2img_response


@pytest.fixture
def make_response() -> Callable[..., FakeResponse]:
    return FakeResponse


@pytest.fixture
def make_session() -> Callable[[], FakeSession]:
    return FakeSession
