# ai_service.py
"""
Retinal image classification through a Hugging Face Gradio space.

- GradioClassifier creates the gradio_client Client once (lazy) and exposes
  classify(image_bytes, mimetype) returning the raw space output.
- top_prediction() picks the highest-confidence label from that output.
- build_prediction() turns a raw result into the `prediction` payload the
  frontend expects, including the placeholder health metrics.
- build_classifier() picks the Gradio space or the offline SimpleClassifier
  depending on configuration.
"""

import os
import math
import random
import logging
import threading
import mimetypes
import tempfile
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional, Tuple

from gradio_client import Client, handle_file

from simple_ai import SimpleClassifier

# Configure logger for ai_service
logger = logging.getLogger("ai_service")
if not logger.handlers:
    ch = logging.StreamHandler()
    formatter = logging.Formatter("[ai_service] %(levelname)s: %(message)s")
    ch.setFormatter(formatter)
    logger.addHandler(ch)
logger.setLevel(logging.INFO)

GLUCOSE_RANGE = (70.0, 400.0)
INTRAOCULAR_PRESSURE_RANGE = (10.0, 30.0)
LAST_CHECKUP = "Today"


class ClassificationError(RuntimeError):
    """Raised when the classifier output can't be turned into a prediction."""


# -----------------------
# Result interpretation
# -----------------------
def _as_pair(item: Any) -> Tuple[str, float]:
    if isinstance(item, dict):
        label, confidence = item.get("label"), item.get("confidence")
    elif isinstance(item, (list, tuple)) and len(item) == 2:
        label, confidence = item
    else:
        raise ClassificationError(f"Unrecognised confidence entry: {item!r}")

    if label is None or confidence is None:
        raise ClassificationError(f"Confidence entry is missing a label or value: {item!r}")
    try:
        value = float(confidence)
    except (TypeError, ValueError):
        raise ClassificationError(f"Confidence is not a number: {confidence!r}")
    # also rejects nan, which would otherwise win every later comparison
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise ClassificationError(f"Confidence outside [0, 1]: {confidence!r}")
    return str(label), value


def _confidence_pairs(result: Any) -> List[Tuple[str, float]]:
    # Spaces with a single Label output sometimes come back wrapped in a 1-tuple
    if isinstance(result, (list, tuple)) and len(result) == 1 and isinstance(result[0], dict):
        result = result[0]

    if isinstance(result, dict):
        confidences = result.get("confidences")
        if confidences:
            return [_as_pair(c) for c in confidences]
        if result.get("label") is not None and result.get("confidence") is not None:
            return [_as_pair(result)]
        raise ClassificationError("Classifier result has no confidences")

    if isinstance(result, (list, tuple)):
        if not result:
            raise ClassificationError("Classifier returned an empty confidence list")
        return [_as_pair(c) for c in result]

    raise ClassificationError(f"Unexpected classifier result type: {type(result).__name__}")


def top_prediction(result: Any) -> Tuple[str, float]:
    """
    Return (label, confidence) with the highest confidence.
    Ties keep the first label seen.
    """
    pairs = _confidence_pairs(result)
    best_label, best_confidence = pairs[0]
    for label, confidence in pairs[1:]:
        if confidence > best_confidence:
            best_label, best_confidence = label, confidence
    return best_label, best_confidence


def format_confidence(confidence: float) -> str:
    """0.8734 -> "87.3%" (one decimal, half-up)."""
    pct = (Decimal(str(confidence)) * 100).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return f"{pct}%"


def generate_health_metrics(rng: Optional[random.Random] = None) -> Dict[str, Any]:
    """Placeholder metrics; sampled fresh for every prediction."""
    rng = rng or random
    return {
        "glucoseLevel": round(rng.uniform(*GLUCOSE_RANGE), 1),
        "intraocularPressure": round(rng.uniform(*INTRAOCULAR_PRESSURE_RANGE), 1),
        "lastCheckup": LAST_CHECKUP,
    }


def build_prediction(result: Any, rng: Optional[random.Random] = None) -> Dict[str, Any]:
    label, confidence = top_prediction(result)
    prediction = {
        "label": label,
        "confidence": format_confidence(confidence),
    }
    prediction.update(generate_health_metrics(rng))
    return prediction


# -----------------------
# Gradio space client
# -----------------------
def _suffix_for(mimetype: Optional[str]) -> str:
    if mimetype:
        ext = mimetypes.guess_extension(mimetype.split(";")[0].strip())
        if ext:
            return ext
    return ".png"


class GradioClassifier:
    """Sends images to a Gradio space and returns whatever it answers."""

    def __init__(self, space: str, api_name: str = "/predict", token: Optional[str] = None,
                 client_factory: Optional[Callable[..., Any]] = None):
        self.space = space
        self.api_name = api_name
        self.token = token
        self._client_factory = client_factory or Client
        self._client = None
        self._client_error = None
        self._client_lock = threading.Lock()

    def _get_client(self):
        if self._client is not None:
            return self._client

        with self._client_lock:
            # another request may have connected while we waited
            if self._client is not None:
                return self._client

            kwargs = {"hf_token": self.token} if self.token else {}
            logger.info("Connecting to Gradio space %s", self.space)
            try:
                self._client = self._client_factory(self.space, **kwargs)
            except Exception as e:
                # Not sticky: the next request tries again
                self._client_error = e
                logger.error("Failed to connect to Gradio space %s: %s", self.space, e)
                raise
            self._client_error = None
            logger.info("Gradio client ready.")
            return self._client

    def classify(self, image_bytes: bytes, mimetype: Optional[str] = None) -> Any:
        """
        Run the space on the uploaded image. gradio_client uploads from a
        path, so the bytes live in a temp file for the duration of the call.
        """
        client = self._get_client()
        fd, path = tempfile.mkstemp(prefix="diabeye_", suffix=_suffix_for(mimetype))
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(image_bytes)
            logger.info("Classifying %d bytes (%s) via %s%s",
                        len(image_bytes), mimetype or "unknown type", self.space, self.api_name)
            return client.predict(handle_file(path), api_name=self.api_name)
        finally:
            try:
                os.remove(path)
            except OSError:
                logger.warning("Could not remove temp upload %s", path)

    def status(self) -> Dict[str, Any]:
        return {
            "backend": "gradio",
            "space": self.space,
            "connected": self._client is not None,
            "error": str(self._client_error) if self._client_error else None,
        }


def build_classifier(settings):
    """Gradio space when HF_SPACE is set, otherwise the offline classifier."""
    if settings.hf_space:
        return GradioClassifier(settings.hf_space, api_name=settings.hf_api_name, token=settings.hf_token)
    logger.warning("HF_SPACE not set; using the offline SimpleClassifier (results are not clinical).")
    return SimpleClassifier()
