"""HTTP-level tests with the model client, fetcher and rate limiter injected."""

from __future__ import annotations

import json

from starlette.requests import Request

from conftest import OUTLINE, as_json

from mindmap_backend.api.endpoints.mindmap import client_key
from mindmap_backend.core.errors import ProviderError


def _frames(body: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


def test_health(api) -> None:
    r = api.get("/")
    assert r.status_code == 200
    data = r.json()
    assert set(data) == {"status", "message", "apiKeyConfigured", "model", "environment"}
    assert data["status"] == "ok"


def test_generate_mindmap(api, fake_client) -> None:
    r = api.post("/generate-mindmap", json={"topic": "Photosynthesis", "depth": 3})
    assert r.status_code == 200
    data = r.json()

    assert data["markdown"].startswith("# Photosynthesis\n")
    assert data["sources"] == []
    assert data["warnings"] == []
    assert data["usage"]["total"] == {"promptTokens": 40, "completionTokens": 20, "totalTokens": 60}
    assert len(fake_client.calls) == 4


def test_camel_case_options_reach_prompts(api, fake_client) -> None:
    r = api.post("/generate-mindmap", json={
        "topic": "Photosynthesis",
        "examplesPerLeaf": 4,
        "includeFAQ": True,
        "includeGlossary": False,
        "audience": "high school students",
        "model": "llama-3.1-8b-instant",
        "temperature": 0.2,
    })
    assert r.status_code == 200

    assert "exactly 4 concrete example(s)" in fake_client.calls[2]["user_prompt"]
    assert "## FAQ" in fake_client.calls[3]["user_prompt"]
    assert "Glossary" not in fake_client.calls[3]["user_prompt"]
    assert all(c["model"] == "llama-3.1-8b-instant" for c in fake_client.calls)
    assert "## FAQ" in r.json()["markdown"]


def test_missing_topic_is_400_without_model_calls(api, fake_client) -> None:
    for body in ({}, {"topic": ""}, {"topic": "   "}):
        r = api.post("/generate-mindmap", json=body)
        assert r.status_code == 400
        assert r.json()["error"] == "Topic is required"
    assert fake_client.calls == []


def test_invalid_option_is_400(api) -> None:
    r = api.post("/generate-mindmap", json={"topic": "Photosynthesis", "depth": 5})
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid request"
    assert "depth" in r.json()["message"]


def test_rate_limit_rejects_31st_request(api) -> None:
    for _ in range(30):
        assert api.post("/generate-mindmap", json={}).status_code == 400

    r = api.post("/generate-mindmap", json={"topic": "Photosynthesis"})
    assert r.status_code == 429
    assert r.json()["error"] == "Too many requests"
    assert "15 minutes" in r.json()["message"]
    assert int(r.headers["retry-after"]) > 0

    other = api.post("/generate-mindmap", json={}, headers={"X-Forwarded-For": "203.0.113.9"})
    assert other.status_code == 400


def test_provider_error_surfaces_as_5xx(api, fake_client) -> None:
    fake_client.replies = [ProviderError("groq: upstream overloaded", status_code=503, provider="groq")]
    r = api.post("/generate-mindmap", json={"topic": "Photosynthesis"})

    assert r.status_code == 503
    data = r.json()
    assert data["error"] == "Failed to generate mindmap"
    assert "overloaded" in data["message"]
    assert "detail" in data  # development mode includes the traceback


def test_provider_client_error_maps_to_502(api, fake_client) -> None:
    fake_client.replies = [ProviderError("grok: invalid api key", status_code=401, provider="grok")]
    r = api.post("/generate-mindmap", json={"topic": "Photosynthesis"})
    assert r.status_code == 502


def test_render_failure_is_502(api, fake_client) -> None:
    fake_client.replies = [as_json(OUTLINE), as_json(OUTLINE), as_json(OUTLINE), "no headings here"]
    r = api.post("/generate-mindmap", json={"topic": "Photosynthesis"})
    assert r.status_code == 502
    assert set(r.json()) >= {"error", "message"}


def test_stream_endpoint(api) -> None:
    r = api.post("/generate-mindmap/stream", json={"topic": "Photosynthesis"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")

    frames = _frames(r.text)
    assert frames[0]["event"] == "status"
    assert frames[-1]["event"] == "done"
    assert "".join(f["text"] for f in frames if f["event"] == "text") == "# Photosynthesis\n## Light Reactions\n"


def test_stream_rejects_blank_topic(api) -> None:
    r = api.post("/generate-mindmap/stream", json={"topic": " "})
    assert r.status_code == 400


def test_cors_preflight_returns_204(api) -> None:
    r = api.options(
        "/generate-mindmap",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "POST"},
    )
    assert r.status_code == 204
    assert r.headers["access-control-allow-origin"] == "http://localhost:5173"


def test_cors_preflight_from_unknown_origin_rejected(api) -> None:
    r = api.options(
        "/generate-mindmap",
        headers={"Origin": "https://evil.example.com", "Access-Control-Request-Method": "POST"},
    )
    assert r.status_code == 400


def test_plain_options_returns_204(api) -> None:
    assert api.options("/anything").status_code == 204


def test_client_key_prefers_forwarded_for() -> None:
    def request(headers: list[tuple[bytes, bytes]]) -> Request:
        return Request({"type": "http", "headers": headers, "client": ("10.1.1.1", 5000)})

    assert client_key(request([(b"x-forwarded-for", b"198.51.100.7, 10.0.0.1")])) == "198.51.100.7"
    assert client_key(request([])) == "10.1.1.1"


def test_disallowed_origin_never_reaches_pipeline(api, fake_client) -> None:
    r = api.post(
        "/generate-mindmap",
        json={"topic": "Photosynthesis"},
        headers={"Origin": "https://evil.example.com"},
    )
    assert r.status_code == 403
    assert set(r.json()) == {"error", "message"}
    assert "access-control-allow-origin" not in r.headers
    assert fake_client.calls == []


def test_allowed_origin_gets_cors_headers(api) -> None:
    r = api.post(
        "/generate-mindmap",
        json={"topic": "Photosynthesis"},
        headers={"Origin": "http://localhost:5173"},
    )
    assert r.status_code == 200
    assert r.headers["access-control-allow-origin"] == "http://localhost:5173"
