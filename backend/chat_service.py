# chat_service.py
"""
Gemini wrapper for the chat assistant and exercise suggestions.

Both calls ask Gemini for JSON constrained by a response schema and return the
parsed reply unchanged. The genai Client is created lazily so the app can
start without GEMINI_API_KEY; the chat routes then fail with a clear error.
"""

import json
import logging
from typing import Any, Dict, Optional

from google import genai
from google.genai import types

logger = logging.getLogger("chat_service")
if not logger.handlers:
    ch = logging.StreamHandler()
    ch.setFormatter(logging.Formatter("[chat_service] %(levelname)s: %(message)s"))
    logger.addHandler(ch)
logger.setLevel(logging.INFO)

EXERCISE_COUNT = 5

CHAT_SAMPLING = {
    "temperature": 1.0,
    "top_p": 0.95,
    "top_k": 40,
    "max_output_tokens": 8192,
}

# Suggestions should vary between requests, so sample hotter than chat.
EXERCISE_SAMPLING = dict(CHAT_SAMPLING, temperature=1.5)

CHAT_SYSTEM_PROMPT = (
    "You are DiabEye, a friendly assistant for people living with diabetes who want to "
    "look after their eyes. Answer the user's message in plain language, offer a few short "
    "follow-up suggestions, and never present your answer as a diagnosis. "
    "Set 'timestamp' to the current time in ISO 8601 format."
)

CHAT_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "message": types.Schema(type=types.Type.STRING, description="Reply to the user's message."),
        "suggestions": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(type=types.Type.STRING),
            description="Short follow-up questions or tips.",
        ),
        "timestamp": types.Schema(type=types.Type.STRING, description="ISO 8601 time of the reply."),
    },
    required=["message", "suggestions", "timestamp"],
)

EXERCISE_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "exercises": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "name": types.Schema(type=types.Type.STRING),
                    "duration": types.Schema(type=types.Type.INTEGER, description="Minutes."),
                    "caloriesBurned": types.Schema(type=types.Type.INTEGER),
                },
                required=["name", "duration", "caloriesBurned"],
            ),
        ),
    },
    required=["exercises"],
)


class LanguageModelError(RuntimeError):
    """Gemini is unavailable or answered with nothing usable."""


def build_exercise_prompt(profile: Dict[str, Any]) -> str:
    return (
        f"Suggest exactly {EXERCISE_COUNT} different exercises for a person with diabetes.\n"
        f"Name: {profile.get('Name', 'unknown')}\n"
        f"Age: {profile.get('Age', 'unknown')}\n"
        f"Weight: {profile.get('weight', 'unknown')}\n"
        f"Preferred exercise type: {profile.get('exercisesType', 'any')}\n"
        f"Session duration: {profile.get('sessionDuration', 'unknown')}\n"
        "For each exercise give its name, its duration in minutes and an estimate of the "
        "calories burned. Keep the durations within the session duration and do not repeat "
        "an exercise. Respond as JSON: "
        '{"exercises": [{"name": string, "duration": integer, "caloriesBurned": integer}]}'
    )


class GeminiService:
    def __init__(self, api_key: Optional[str], model: str = "gemini-2.5-flash", client=None):
        self.api_key = api_key
        self.model = model
        self._client = client

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise LanguageModelError("GEMINI_API_KEY is not configured")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def _generate(self, text: str, schema: types.Schema, sampling: Dict[str, Any],
                  system_instruction: Optional[str] = None) -> Any:
        client = self._get_client()
        contents = [types.Content(role="user", parts=[types.Part.from_text(text=text)])]
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            response_mime_type="application/json",
            response_schema=schema,
            **sampling,
        )
        logger.info("Calling %s (temperature=%s)", self.model, sampling["temperature"])
        response = client.models.generate_content(model=self.model, contents=contents, config=config)
        if not response.text:
            raise LanguageModelError("Gemini returned an empty response")
        return json.loads(response.text)

    def chat(self, body: Dict[str, Any]) -> Any:
        """The whole request body is the user turn."""
        return self._generate(
            json.dumps(body, ensure_ascii=False),
            CHAT_SCHEMA,
            CHAT_SAMPLING,
            system_instruction=CHAT_SYSTEM_PROMPT,
        )

    def exercise_suggestions(self, profile: Dict[str, Any]) -> Any:
        return self._generate(build_exercise_prompt(profile), EXERCISE_SCHEMA, EXERCISE_SAMPLING)


def build_language_model(settings) -> GeminiService:
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY not set; /api/chat and /api/exercise-suggestions will fail.")
    return GeminiService(settings.gemini_api_key, model=settings.gemini_model)
