"""Shared pytest fixtures: an in-process fake of the inference backend's HTTP API."""

import json
from typing import Any

import httpx
import pytest

from agentcore.config.schema import ModelRuntimeConfig
from agentcore.core.utils import model_names_match
from agentcore.runtime.backend import OllamaBackend
from agentcore.runtime.runtime import ModelRuntime

TEST_ENDPOINT = "http://localhost:11434"


def ndjson(*objects: dict[str, Any]) -> bytes:
    """Encode objects as newline-delimited JSON."""
    return "".join(json.dumps(obj) + "\n" for obj in objects).encode()


class FakeOllama:
    """Route handler for httpx.MockTransport that mimics the backend.

    Tests tweak the public attributes to shape responses and read
    ``requests`` to see what was sent.
    """

    def __init__(self) -> None:
        self.models: list[str] = ["llama3:8b", "mistral:latest"]
        self.running: list[dict[str, Any]] = []
        self.reply = "Hello from the model."
        self.stream_parts: list[str] = ["Hello", ", ", "world"]
        self.stream_done = True
        self.pull_lines: list[dict[str, Any]] = [
            {"status": "pulling manifest"},
            {"status": "downloading", "total": 200, "completed": 50},
            {"status": "downloading", "total": 200, "completed": 200},
            {"status": "success"},
        ]
        self.show_info: dict[str, Any] = {
            "modelfile": "FROM llama3",
            "parameters": "temperature 0.7",
            "template": "{{ .Prompt }}",
            "details": {"family": "llama", "parameter_size": "8B"},
            "license": "META LLAMA 3 COMMUNITY LICENSE",
        }
        self.embedding: list[float] | None = None
        self.unreachable = False
        self.failures: dict[str, httpx.Response] = {}
        self.requests: list[tuple[str, dict[str, Any]]] = []

    def bodies(self, path: str) -> list[dict[str, Any]]:
        """Return the JSON bodies sent to one path, oldest first."""
        return [body for p, body in self.requests if p == path]

    def _has_model(self, name: str | None) -> bool:
        return bool(name) and any(model_names_match(name, m) for m in self.models)

    def _not_found(self, name: str | None) -> httpx.Response:
        return httpx.Response(404, json={"error": f"model '{name}' not found"})

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else {}
        self.requests.append((path, body))

        if self.unreachable:
            raise httpx.ConnectError("Connection refused", request=request)
        if path in self.failures:
            return self.failures[path]

        if path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": m} for m in self.models]})
        if path == "/api/ps":
            return httpx.Response(200, json={"models": self.running})
        if path == "/api/pull":
            return httpx.Response(200, content=ndjson(*self.pull_lines))
        if path == "/api/show":
            if not self._has_model(body.get("name")):
                return self._not_found(body.get("name"))
            return httpx.Response(200, json=self.show_info)
        if path == "/api/embeddings":
            if self.embedding is None:
                return httpx.Response(500, json={"error": "embedding model not loaded"})
            return httpx.Response(200, json={"embedding": self.embedding})
        if path in ("/api/generate", "/api/chat"):
            if not self._has_model(body.get("model")):
                return self._not_found(body.get("model"))
            return self._generation(path == "/api/chat", body)

        return httpx.Response(404, text="404 page not found")

    def _piece(self, text: str, is_chat: bool, model: str) -> dict[str, Any]:
        if is_chat:
            return {"model": model, "message": {"role": "assistant", "content": text}}
        return {"model": model, "response": text}

    def _generation(self, is_chat: bool, body: dict[str, Any]) -> httpx.Response:
        model = body["model"]
        stats = {
            "done": True,
            "context": [1, 2, 3],
            "total_duration": 2_000_000,
            "load_duration": 500_000,
            "prompt_eval_count": 12,
            "eval_count": 7,
        }

        if not body.get("stream"):
            return httpx.Response(200, json={**self._piece(self.reply, is_chat, model), **stats})

        lines = [{**self._piece(p, is_chat, model), "done": False} for p in self.stream_parts]
        if self.stream_done:
            lines.append({**self._piece("", is_chat, model), **stats})
        return httpx.Response(200, content=ndjson(*lines))


def make_backend(fake: FakeOllama, **config: Any) -> OllamaBackend:
    """Build a backend whose HTTP client talks to ``fake``."""
    settings = {"endpoint": TEST_ENDPOINT, "max_retries": 0, **config}
    backend = OllamaBackend(ModelRuntimeConfig(**settings))
    backend._client = httpx.AsyncClient(transport=httpx.MockTransport(fake.handler))
    return backend


@pytest.fixture
def ollama() -> FakeOllama:
    return FakeOllama()


@pytest.fixture
def backend(ollama: FakeOllama) -> OllamaBackend:
    return make_backend(ollama)


@pytest.fixture
def runtime(backend: OllamaBackend) -> ModelRuntime:
    return ModelRuntime({"endpoint": TEST_ENDPOINT, "max_retries": 0}, backend=backend)


@pytest.fixture
def backend_factory(ollama: FakeOllama):
    """Build extra backends against the same fake with other settings."""

    def factory(**config: Any) -> OllamaBackend:
        return make_backend(ollama, **config)

    return factory
