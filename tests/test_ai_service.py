import os
import random
import threading

import pytest

import ai_service
from ai_service import (
    ClassificationError,
    GradioClassifier,
    build_classifier,
    build_prediction,
    format_confidence,
    generate_health_metrics,
    top_prediction,
)
from settings import Settings
from simple_ai import SimpleClassifier


@pytest.mark.parametrize("confidence,expected", [
    (0.8734, "87.3%"),
    (0.8735, "87.4%"),
    (1.0, "100.0%"),
    (0.0, "0.0%"),
    (0.05, "5.0%"),
])
def test_format_confidence(confidence, expected):
    assert format_confidence(confidence) == expected


def test_top_prediction_from_gradio_label():
    result = {
        "label": "Severe",
        "confidences": [
            {"label": "Severe", "confidence": 0.6},
            {"label": "Moderate", "confidence": 0.3},
        ],
    }
    assert top_prediction(result) == ("Severe", 0.6)


def test_top_prediction_scans_whole_list():
    pairs = [("No DR", 0.1), ("Mild", 0.2), ("Proliferative DR", 0.7)]
    assert top_prediction(pairs) == ("Proliferative DR", 0.7)


def test_top_prediction_tie_keeps_first():
    result = [{"label": "A", "confidence": 0.5}, {"label": "B", "confidence": 0.5}]
    assert top_prediction(result)[0] == "A"


def test_top_prediction_unwraps_single_output_tuple():
    result = ({"label": "Mild", "confidences": [{"label": "Mild", "confidence": 0.9}]},)
    assert top_prediction(result) == ("Mild", 0.9)


def test_top_prediction_accepts_label_with_confidence():
    assert top_prediction({"label": "Mild", "confidence": 0.42}) == ("Mild", 0.42)


@pytest.mark.parametrize("result", [
    [],
    {},
    {"label": "Mild"},
    {"label": "Mild", "confidences": []},
    [{"label": "Mild"}],
    [("Mild", "high")],
    [{"label": "A", "confidence": "nan"}, {"label": "B", "confidence": 0.9}],
    [("A", float("inf"))],
    [("A", 1.5)],
    [("A", -0.1)],
    "Mild",
    None,
])
def test_top_prediction_rejects_unusable_results(result):
    with pytest.raises(ClassificationError):
        top_prediction(result)


def test_health_metrics_ranges():
    rng = random.Random(7)
    for _ in range(200):
        metrics = generate_health_metrics(rng)
        assert 70 <= metrics["glucoseLevel"] <= 400
        assert 10 <= metrics["intraocularPressure"] <= 30
        assert metrics["glucoseLevel"] == round(metrics["glucoseLevel"], 1)
        assert metrics["lastCheckup"] == "Today"


def test_build_prediction():
    prediction = build_prediction([("A", 0.8734), ("B", 0.1)], rng=random.Random(1))
    assert prediction["label"] == "A"
    assert prediction["confidence"] == "87.3%"
    assert set(prediction) == {"label", "confidence", "glucoseLevel", "intraocularPressure", "lastCheckup"}


# -----------------------
# GradioClassifier
# -----------------------
class FakeGradioClient:
    instances = []

    def __init__(self, space, **kwargs):
        self.space = space
        self.kwargs = kwargs
        self.calls = []
        FakeGradioClient.instances.append(self)

    def predict(self, file_arg, api_name=None):
        path = file_arg["path"]
        with open(path, "rb") as fh:
            data = fh.read()
        self.calls.append((path, data, api_name))
        return {"label": "Mild", "confidences": [{"label": "Mild", "confidence": 0.77}]}


@pytest.fixture(autouse=True)
def reset_fake_clients():
    FakeGradioClient.instances = []


def test_gradio_classifier_sends_bytes_and_removes_temp_file():
    classifier = GradioClassifier("someone/retina", api_name="/predict", client_factory=FakeGradioClient)
    result = classifier.classify(b"\x89PNG fake", "image/png")

    assert result["label"] == "Mild"
    client = FakeGradioClient.instances[0]
    path, data, api_name = client.calls[0]
    assert data == b"\x89PNG fake"
    assert api_name == "/predict"
    assert path.endswith(".png")
    assert not os.path.exists(path)


def test_gradio_client_created_once():
    classifier = GradioClassifier("someone/retina", client_factory=FakeGradioClient)
    classifier.classify(b"a", "image/jpeg")
    classifier.classify(b"b", "image/jpeg")
    assert len(FakeGradioClient.instances) == 1
    assert classifier.status()["connected"] is True


def test_gradio_token_passed_only_when_set():
    GradioClassifier("someone/retina", token="hf_x", client_factory=FakeGradioClient).classify(b"a")
    GradioClassifier("someone/retina", client_factory=FakeGradioClient).classify(b"a")
    assert FakeGradioClient.instances[0].kwargs == {"hf_token": "hf_x"}
    assert FakeGradioClient.instances[1].kwargs == {}


def test_gradio_connect_failure_is_reported_and_retried():
    attempts = []

    def flaky(space, **kwargs):
        attempts.append(space)
        if len(attempts) == 1:
            raise ConnectionError("space not reachable")
        return FakeGradioClient(space, **kwargs)

    classifier = GradioClassifier("someone/retina", client_factory=flaky)
    with pytest.raises(ConnectionError):
        classifier.classify(b"a", "image/png")
    assert classifier.status()["error"] == "space not reachable"

    classifier.classify(b"a", "image/png")
    assert len(attempts) == 2
    assert classifier.status()["error"] is None


def test_build_classifier_picks_backend():
    assert isinstance(build_classifier(Settings.from_env({})), SimpleClassifier)
    gradio = build_classifier(Settings.from_env({"HF_SPACE": "someone/retina", "HF_API_NAME": "/classify"}))
    assert isinstance(gradio, GradioClassifier)
    assert gradio.space == "someone/retina"
    assert gradio.api_name == "/classify"


def test_suffix_falls_back_to_png():
    assert ai_service._suffix_for(None) == ".png"
    assert ai_service._suffix_for("application/x-unknown-thing") == ".png"
    assert ai_service._suffix_for("image/png") == ".png"


def test_gradio_client_created_once_under_concurrent_first_requests():
    created = []
    gate = threading.Event()

    def slow_factory(space, **kwargs):
        created.append(space)
        gate.wait(timeout=2)
        return FakeGradioClient(space, **kwargs)

    classifier = GradioClassifier("someone/retina", client_factory=slow_factory)
    workers = [threading.Thread(target=classifier.classify, args=(b"a", "image/png")) for _ in range(4)]
    for w in workers:
        w.start()
    gate.set()
    for w in workers:
        w.join(timeout=5)

    assert len(created) == 1
    assert sum(len(c.calls) for c in FakeGradioClient.instances) == 4
