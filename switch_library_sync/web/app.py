"""Flask application - JSON routes for the switch-library-sync web UI."""

from pathlib import Path

from flask import Flask, Response, jsonify, request

from ..exceptions import LibraryError, SettingsError, StateNotLoadedError
from ..service import LibraryService
from ..settings import AppSettings
from .tasks import TaskManager, to_jsonable


def create_app(data_dir: Path | None = None, service: LibraryService | None = None) -> Flask:
    app = Flask(__name__)
    app.config["DATA_DIR"] = data_dir

    tasks = TaskManager()
    svc = service or LibraryService(data_dir=data_dir)
    app.extensions["library_service"] = svc
    app.extensions["task_manager"] = tasks

    def start(operation: str, fn, **kwargs):
        task_id = tasks.create(operation)
        progress_cb = tasks.progress_callback(task_id)
        tasks.run_in_background(task_id, fn, on_progress=progress_cb, **kwargs)
        return jsonify({"task_id": task_id}), 202

    def query(fn):
        try:
            return jsonify(to_jsonable(fn()))
        except StateNotLoadedError as e:
            return jsonify({"error": str(e)}), 409
        except LibraryError as e:
            return jsonify({"error": str(e)}), 400

    # -- Operation triggers --

    @app.route("/api/catalog/refresh", methods=["POST"])
    def api_refresh_catalog():
        return start("update_catalog", svc.update_catalog)

    @app.route("/api/library/scan", methods=["POST"])
    def api_scan_library():
        data = request.get_json(silent=True) or {}
        hard = bool(data.get("hard", False))
        return start("hard_rescan" if hard else "scan", svc.update_library, hard=hard)

    @app.route("/api/organize", methods=["POST"])
    def api_organize():
        return start("organize", svc.organize)

    # -- Queries --

    @app.route("/api/library")
    def api_library():
        return query(svc.library_view)

    @app.route("/api/missing/dlc")
    def api_missing_dlc():
        return query(svc.get_missing_dlc)

    @app.route("/api/missing/updates")
    def api_missing_updates():
        return query(svc.get_missing_updates)

    @app.route("/api/missing/games")
    def api_missing_games():
        return query(svc.get_missing_games)

    # -- Settings --

    @app.route("/api/settings")
    def api_get_settings():
        try:
            return jsonify(svc.load_settings().to_dict())
        except SettingsError as e:
            return jsonify({"error": str(e)}), 400

    @app.route("/api/settings", methods=["PUT"])
    def api_save_settings():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "settings must be a JSON object"}), 400
        try:
            settings = AppSettings.from_dict(data)
        except (SettingsError, TypeError) as e:
            return jsonify({"error": str(e)}), 400
        svc.save_settings(settings)
        return jsonify(settings.to_dict())

    # -- Tasks --

    @app.route("/api/tasks/<task_id>")
    def api_task_status(task_id: str):
        task = tasks.get(task_id)
        if not task:
            return jsonify({"error": "Task not found"}), 404
        return jsonify(task.to_dict(to_jsonable(task.result)))

    @app.route("/api/tasks/<task_id>/stream")
    def api_task_stream(task_id: str):
        return Response(
            tasks.stream_events(task_id),
            mimetype="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    return app
