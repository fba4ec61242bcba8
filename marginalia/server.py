"""
HTTP front for the background notes service.

Pages (or a :class:`~marginalia.backends.HttpChannel`) post the same
``loadNotes``/``saveNotes`` messages they would send in-process; read-only
endpoints list and export notes per video.
"""

import asyncio
from typing import Optional

from flask import Flask, Response, jsonify, request

from . import __version__
from .background import NotesService
from .export import FORMATS, render
from .logging import get_logger
from .models import PersistenceError, VideoAnnotationSet
from .store import ORDERS, sort_notes

logger = get_logger(__name__)

MIMETYPES = {
    "vtt": "text/vtt",
    "srt": "text/plain",
    "json": "application/json",
    "md": "text/markdown",
}


def create_app(service: NotesService) -> Flask:
    """Create and configure the notes server Flask app."""
    app = Flask(__name__)
    app.config["SERVICE"] = service

    def _load_state() -> dict:
        return asyncio.run(service.load())

    def _video(video_id: str) -> Optional[VideoAnnotationSet]:
        data = _load_state().get(video_id)
        if data is None:
            return None
        return VideoAnnotationSet.from_dict(video_id, data)

    @app.errorhandler(PersistenceError)
    def persistence_failed(error):
        logger.warning("Request failed: %s", error)
        return jsonify({"success": False, "error": str(error)}), 503

    # ==========================================================================
    # Channel
    # ==========================================================================

    @app.route("/api/message", methods=["POST"])
    def message():
        """Answer a loadNotes/saveNotes message."""
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"success": False, "error": "Expected a JSON object"}), 400
        response = asyncio.run(service.handle(payload))
        return jsonify(response)

    @app.route("/api/status")
    def get_status():
        return jsonify(
            {
                "version": __version__,
                "backend": service.backend.name,
                "videos": len(service.cache),
            }
        )

    # ==========================================================================
    # Notes API
    # ==========================================================================

    @app.route("/api/videos", methods=["GET"])
    def list_videos():
        state = _load_state()
        videos = [
            {
                "video_id": video_id,
                "title": data.get("title", ""),
                "count": len(data.get("notes") or {}),
            }
            for video_id, data in sorted(state.items())
        ]
        return jsonify({"count": len(videos), "videos": videos})

    @app.route("/api/videos/<video_id>/notes", methods=["GET"])
    def list_notes(video_id: str):
        order = request.args.get("order", "time")
        if order not in ORDERS:
            return jsonify({"error": f"Unknown order: {order}"}), 400

        video = _video(video_id)
        if video is None:
            return jsonify({"error": "Video not found"}), 404

        notes = sort_notes(video.notes.values(), order)
        return jsonify(
            {
                "video_id": video_id,
                "title": video.title,
                "count": len(notes),
                "notes": [
                    {"id": n.id, "display_time": n.display_time, **n.to_dict()} for n in notes
                ],
            }
        )

    # ==========================================================================
    # Export Endpoints
    # ==========================================================================

    @app.route("/api/export/<video_id>/<format>")
    def export_video(video_id: str, format: str):
        if format not in FORMATS:
            return jsonify({"error": f"Unknown format: {format}"}), 400

        video = _video(video_id)
        if video is None or not video.notes:
            return jsonify({"error": "No notes to export"}), 404

        response = Response(render(video, format), mimetype=MIMETYPES[format])
        response.headers["Content-Disposition"] = (
            f'attachment; filename="{video_id}_notes.{format}"'
        )
        return response

    return app


def run_server(
    service: NotesService,
    host: str = "127.0.0.1",
    port: int = 8766,
):
    """Run the notes server."""
    app = create_app(service)

    url = f"http://{host}:{port}"
    logger.info("Starting notes server at %s (%s backend)", url, service.backend.name)

    # Single-threaded: the service cache is not shared across threads
    app.run(host=host, port=port, debug=False, threaded=False)
