import json

import pytest

from app import create_app
from storage import JsonFileStore

TODO_APP = {
    "appName": "ToDo",
    "description": "x",
    "code": "<html><body><h1>Todo</h1></body></html>",
}

RED_APPLE_URI = "data:image/png;base64,cmVkYXBwbGU="


class FakeGemini:
    """Scripted stand-in for GeminiClient.

    ``replies`` is a list of fragment lists, one per stream call; the last one
    repeats. ``image_results`` maps a description prefix to a data URI or None.
    """

    def __init__(self, replies=None, image_results=None):
        self.replies = replies or [[json.dumps(TODO_APP)]]
        self.image_results = image_results or {}
        self.stream_calls = []
        self.image_calls = []

    def stream_generation(self, prompt, history=(), model=None):
        self.stream_calls.append({"prompt": prompt, "history": list(history), "model": model})
        index = min(len(self.stream_calls) - 1, len(self.replies) - 1)
        for fragment in self.replies[index]:
            if isinstance(fragment, Exception):
                raise fragment
            yield fragment

    def generate_image(self, description):
        self.image_calls.append(description)
        for prefix, result in self.image_results.items():
            if description.startswith(prefix):
                return result
        return None


def split_fragments(text, size=7):
    return [text[i:i + size] for i in range(0, len(text), size)]


def read_events(response):
    return [json.loads(line) for line in response.get_data(as_text=True).splitlines() if line.strip()]


@pytest.fixture
def store(tmp_path):
    return JsonFileStore(str(tmp_path / "store.json"))


@pytest.fixture
def gemini():
    return FakeGemini()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def app(store, gemini, sleeps):
    app = create_app(
        {"TESTING": True, "SECRET_KEY": "test", "ADMIN_EMAIL": "admin@example.com",
         "DAILY_FREE_CREDITS": 3, "GUEST_LIMIT": 2},
        store=store,
        gemini=gemini,
        sleep=sleeps.append,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def signed_in(client):
    res = client.post("/api/auth/signup", json={
        "name": "Ada", "email": "ada@example.com", "password": "hunter22",
    })
    assert res.status_code == 200
    return res.get_json()["user"]


@pytest.fixture
def project(client, signed_in):
    res = client.post("/api/projects", json={})
    assert res.status_code == 201
    return res.get_json()
