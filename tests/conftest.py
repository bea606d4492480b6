import io

import pytest
from PIL import Image

from app import create_app
from settings import Settings


class FakeClassifier:
    def __init__(self, result=None, error=None):
        self.result = result if result is not None else {
            "label": "Moderate",
            "confidences": [
                {"label": "Moderate", "confidence": 0.8734},
                {"label": "Mild", "confidence": 0.1},
                {"label": "No DR", "confidence": 0.0266},
            ],
        }
        self.error = error
        self.calls = []

    def classify(self, image_bytes, mimetype=None):
        self.calls.append((image_bytes, mimetype))
        if self.error:
            raise self.error
        return self.result

    def status(self):
        return {"backend": "fake", "space": None, "connected": True, "error": None}


class FakeLanguageModel:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.chat_calls = []
        self.exercise_calls = []

    def chat(self, body):
        self.chat_calls.append(body)
        if self.error:
            raise self.error
        return self.reply

    def exercise_suggestions(self, profile):
        self.exercise_calls.append(profile)
        if self.error:
            raise self.error
        return self.reply


class FakeDatabase:
    def __init__(self, ready=False, error=None):
        self.ready = ready
        self.error = error
        self.connect_started = False

    def connect_in_background(self):
        self.connect_started = True

    def status(self):
        return {"configured": True, "ready": self.ready, "error": self.error}


@pytest.fixture
def settings():
    return Settings.from_env({})


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def language_model():
    return FakeLanguageModel(reply={
        "message": "Keep your blood sugar steady.",
        "suggestions": ["Book an eye exam"],
        "timestamp": "2024-05-01T10:00:00Z",
    })


@pytest.fixture
def database():
    return FakeDatabase()


@pytest.fixture
def app(settings, classifier, language_model, database):
    app = create_app(settings, classifier=classifier, language_model=language_model, database=database)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def make_image_bytes(color=(128, 128, 128), size=(32, 32), fmt="PNG"):
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def image_bytes():
    return make_image_bytes()


@pytest.fixture
def make_image():
    return make_image_bytes
