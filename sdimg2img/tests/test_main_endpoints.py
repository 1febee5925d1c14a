"""Tests covering the FastAPI routes defined in :mod:`sdimg2img.main`."""

from __future__ import annotations

import base64
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from sdimg2img.aiservices.stablediffusionclient import StableDiffusionClient
from sdimg2img.errors import GenerationCancelledError
from sdimg2img.main import app
from sdimg2img.service import GenerationState, Img2ImgService, get_img2img_service

IMG2IMG_URL = "http://sd.local:7860/sdapi/v1/img2img"
SAMPLERS_URL = "http://sd.local:7860/sdapi/v1/samplers"
MODELS_URL = "http://sd.local:7860/sdapi/v1/sd-models"


@pytest.fixture
def service(settings, fake_session) -> Img2ImgService:
    client = StableDiffusionClient(settings, session_factory=lambda: fake_session)
    return Img2ImgService(settings, client=client, identifier="api-image")


@pytest.fixture
def client(service):
    """Yield a :class:`TestClient` backed by a service talking to the fake session."""

    app.dependency_overrides[get_img2img_service] = lambda: service

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _payload(image: bytes, **overrides) -> dict:
    payload = {"initImage": base64.b64encode(image).decode("ascii"), "prompt": "a cat", "steps": 20}
    payload.update(overrides)
    return payload


def test_healthcheck_reports_ok(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_img2img_generates_persists_and_presents(
    client: TestClient, service: Img2ImgService, settings, fake_session, make_png, make_img2img_response
) -> None:
    generated = make_png(1, 1)
    fake_session.post_responses[IMG2IMG_URL] = make_img2img_response(generated, seed=42)

    response = client.post("/img2img", json=_payload(make_png(64, 64)))

    assert response.status_code == 200
    body = response.json()
    assert body["identifier"] == "api-image"
    assert body["seed"] == 42
    assert (body["width"], body["height"]) == (1, 1)
    assert base64.b64decode(body["image"]) == generated
    assert Path(body["path"]) == Path(settings.output_folder) / "SDImages" / "api-image.png"

    image = client.get("/image")
    assert image.status_code == 200
    assert image.headers["content-type"] == "image/png"
    assert image.content == generated

    status = client.get("/status").json()
    assert status == {"state": "idle", "identifier": "api-image", "generatedSeed": 42, "lastError": None}


def test_img2img_accepts_data_urls(client: TestClient, fake_session, make_png, make_img2img_response) -> None:
    fake_session.post_responses[IMG2IMG_URL] = make_img2img_response(make_png())
    encoded = base64.b64encode(make_png(8, 8)).decode("ascii")

    response = client.post("/img2img", json=_payload(b"", initImage=f"data:image/png;base64,{encoded}"))

    assert response.status_code == 200


def test_image_is_missing_before_first_generation(client: TestClient) -> None:
    response = client.get("/image")

    assert response.status_code == 404
    assert response.json()["detail"] == "No image has been generated yet"


def test_img2img_requires_prompt(client: TestClient, make_png) -> None:
    response = client.post("/img2img", json={"initImage": base64.b64encode(make_png()).decode()})

    assert response.status_code == 422
    assert any(err["loc"][-1] == "prompt" for err in response.json()["detail"])


def test_img2img_rejects_invalid_base64(client: TestClient) -> None:
    response = client.post("/img2img", json={"initImage": "%%%", "prompt": "a cat"})

    assert response.status_code == 422
    assert response.json()["detail"] == "initImage must be base64-encoded image data"


def test_img2img_rejects_empty_prompt(client: TestClient, fake_session, make_png) -> None:
    response = client.post("/img2img", json=_payload(make_png(), prompt="  "))

    assert response.status_code == 422
    assert "Prompt" in response.json()["detail"]
    assert fake_session.posts == []


def test_img2img_rejects_unreadable_image(client: TestClient) -> None:
    response = client.post("/img2img", json=_payload(b"not an image"))

    assert response.status_code == 422
    assert "readable" in response.json()["detail"]


def test_img2img_surfaces_405_hint(client: TestClient, fake_session, make_png, make_response) -> None:
    fake_session.post_responses[IMG2IMG_URL] = make_response(405, text="Method Not Allowed")

    response = client.post("/img2img", json=_payload(make_png()))

    assert response.status_code == 502
    assert "--api" in response.json()["detail"]

    status = client.get("/status").json()
    assert status["state"] == "idle"
    assert status["lastError"]


def test_img2img_reports_empty_result(client: TestClient, fake_session, make_png, make_response) -> None:
    fake_session.post_responses[IMG2IMG_URL] = make_response(200, {"images": [], "info": ""})

    response = client.post("/img2img", json=_payload(make_png()))

    assert response.status_code == 502
    assert "No image" in response.json()["detail"]


def test_img2img_conflicts_while_busy(client: TestClient, service: Img2ImgService, fake_session, make_png) -> None:
    service._state = GenerationState.POLLING
    try:
        response = client.post("/img2img", json=_payload(make_png()))
    finally:
        service._state = GenerationState.IDLE

    assert response.status_code == 409
    assert fake_session.posts == []


def test_cancel_without_generation(client: TestClient) -> None:
    response = client.post("/img2img/cancel")

    assert response.status_code == 202
    assert response.json() == {"cancelled": False}


def test_samplers_and_models_are_listed(client: TestClient, fake_session, make_response) -> None:
    fake_session.get_responses[SAMPLERS_URL] = make_response(200, [{"name": "Euler a"}, {"name": "DDIM"}])
    fake_session.get_responses[MODELS_URL] = make_response(200, [{"title": "sd15 [abc]", "model_name": "sd15"}])

    assert client.get("/samplers").json() == {"samplers": ["Euler a", "DDIM"]}
    assert client.get("/models").json() == {"models": ["sd15"]}


def test_catalogue_failure_maps_to_bad_gateway(client: TestClient, fake_session, make_response) -> None:
    fake_session.get_responses[MODELS_URL] = make_response(500, text="oops")

    response = client.get("/models")

    assert response.status_code == 502


def test_cancelled_generation_maps_to_conflict(client: TestClient, service: Img2ImgService, monkeypatch, make_png) -> None:
    async def cancelled_generate(request, on_progress=None):
        raise GenerationCancelledError("Generation cancelled while waiting on the server")

    monkeypatch.setattr(service, "generate", cancelled_generate)

    response = client.post("/img2img", json=_payload(make_png()))

    assert response.status_code == 409
    assert "cancelled" in response.json()["detail"]


def test_unwritable_output_folder_maps_to_server_error(
    client: TestClient, settings, fake_session, make_png, make_img2img_response
) -> None:
    Path(settings.output_folder).write_text("a file where the output folder should be")
    fake_session.post_responses[IMG2IMG_URL] = make_img2img_response(make_png())

    response = client.post("/img2img", json=_payload(make_png()))

    assert response.status_code == 500
    assert "output folder" in response.json()["detail"]
    assert fake_session.posts == []
    assert client.get("/status").json()["state"] == "idle"


def test_undecodable_image_maps_to_bad_gateway(client: TestClient, fake_session, make_png, make_response) -> None:
    fake_session.post_responses[IMG2IMG_URL] = make_response(200, {"images": ["!!"], "info": ""})

    response = client.post("/img2img", json=_payload(make_png()))

    assert response.status_code == 502
    assert "base64" in response.json()["detail"]
    assert client.get("/image").status_code == 404
