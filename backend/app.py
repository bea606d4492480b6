# app.py
"""
DiabEye backend (Flask)
- Retinal image upload -> Gradio space classifier (/api/predict)
- Chat assistant and exercise suggestions -> Gemini (/api/chat, /api/exercise-suggestions)
- One error envelope for every collaborator failure
- Collaborators are built once in create_app() and injected into the routes
- Reads PORT from env (default 3001)
"""

import atexit
import logging
from functools import wraps

from flask import Flask, jsonify, request, current_app
from flask_cors import CORS

from settings import Settings
from database import Database
from ai_service import build_classifier, build_prediction
from chat_service import build_language_model

PREDICT_ERROR = "Failed to process the image"
CHAT_ERROR = "Failed to process chat message"
EXERCISE_ERROR = "Failed to generate exercise suggestions"


# -----------------------
# Helpers
# -----------------------
def envelope_errors(message: str):
    """
    Turn any exception raised by the wrapped view into
    {"success": false, "error": message, "details": str(exc)} with status 500.
    """
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            try:
                return view(*args, **kwargs)
            except Exception as e:
                current_app.logger.exception("%s (%s %s)", message, request.method, request.path)
                return jsonify({"success": False, "error": message, "details": str(e)}), 500
        return wrapper
    return decorator


# -----------------------
# Routes
# -----------------------
def register_routes(app: Flask, classifier, language_model, database) -> None:

    @app.route("/", methods=["GET"])
    def index():
        return "Hello DiabEye!"

    @app.route("/test", methods=["GET"])
    def test():
        return "DiabEye test route is working!"

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({
            "status": "ok",
            "database": database.status(),
            "classifier": classifier.status(),
        })

    @app.route("/api/predict", methods=["POST"])
    @envelope_errors(PREDICT_ERROR)
    def predict():
        file = request.files.get("image")
        if file is None or not file.filename:
            return jsonify({"error": "No image file provided"}), 400

        image_bytes = file.read()
        result = classifier.classify(image_bytes, file.mimetype)
        prediction = build_prediction(result)
        app.logger.info("Prediction: %s (%s)", prediction["label"], prediction["confidence"])
        return jsonify({"success": True, "prediction": prediction})

    @app.route("/api/chat", methods=["POST"])
    @envelope_errors(CHAT_ERROR)
    def chat():
        body = request.get_json(silent=True) or {}
        return jsonify(language_model.chat(body))

    @app.route("/api/exercise-suggestions", methods=["POST"])
    @envelope_errors(EXERCISE_ERROR)
    def exercise_suggestions():
        profile = request.get_json(silent=True) or {}
        return jsonify(language_model.exercise_suggestions(profile))

    @app.errorhandler(404)
    def handle_404(err):
        return jsonify({"error": "Not found"}), 404


# -----------------------
# App factory
# -----------------------
def create_app(settings: Settings = None, classifier=None, language_model=None,
               database=None, connect_database: bool = True) -> Flask:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    app = Flask(__name__)
    app.config["DIABEYE_SETTINGS"] = settings
    CORS(app, origins=settings.cors_origins, supports_credentials=True)
    app.logger.info("CORS origins: %s", ", ".join(settings.cors_origins))

    classifier = classifier or build_classifier(settings)
    language_model = language_model or build_language_model(settings)
    database = database or Database.from_settings(settings)

    if connect_database:
        database.connect_in_background()

    register_routes(app, classifier, language_model, database)
    return app


# -----------------------
# Start app
# -----------------------
def main(settings: Settings = None):
    settings = settings or Settings.from_env()
    database = Database.from_settings(settings)
    atexit.register(database.close)

    app = create_app(settings, database=database)
    app.logger.info("Server is running on http://localhost:%d", settings.port)
    app.run(host=settings.host, port=settings.port, debug=settings.debug)


if __name__ == "__main__":
    main()
