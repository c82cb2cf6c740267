# plotmap/app.py
import logging
from typing import Optional

from flask import Blueprint, Flask, current_app, jsonify, request, send_file
from flask_cors import CORS
from pydantic import ValidationError

from plotmap.config import Settings
from plotmap.errors import ConfigurationError, PersistenceError
from plotmap.schemas.map_config import (
    AlignmentUpdate,
    CornerEdit,
    MapConfig,
    MarkerDrag,
    OpenAlignmentRequest,
    ViewportSpec,
)
from plotmap.services.alignment import OverlayAlignmentController
from plotmap.services.image_resolver import (
    BLOB_PREFIX,
    ImageReferenceResolver,
    LatestImageResolution,
    ObjectUrlRegistry,
    SignedUrlCache,
)
from plotmap.services.map_config_store import MapConfigStore, project_key
from plotmap.services.sessions import AlignmentSession, SessionRegistry
from plotmap.utils.viewport import WebMercatorViewport


LOGGER = logging.getLogger(__name__)

api = Blueprint("plotmap", __name__)


class Services:
    """Collaborators shared by every request of one app instance."""

    def __init__(
        self,
        settings: Settings,
        store: Optional[MapConfigStore] = None,
        resolver: Optional[ImageReferenceResolver] = None,
    ):
        self.settings = settings
        self.store = store or MapConfigStore(settings.map_config_dir)
        self.resolver = resolver or ImageReferenceResolver(
            signing_base_url=settings.signing_base_url,
            local_dir=settings.local_image_dir,
            cache=SignedUrlCache(),
            registry=ObjectUrlRegistry(),
            ttl=settings.signed_url_ttl,
        )
        self.sessions = SessionRegistry()


def _services() -> Services:
    return current_app.extensions["plotmap"]


def _json_body() -> dict:
    payload = request.get_json(force=True, silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigurationError("JSON body must be an object")
    return payload


def _viewport(spec: Optional[ViewportSpec]) -> Optional[WebMercatorViewport]:
    if spec is None:
        return None
    return WebMercatorViewport(
        center=tuple(spec.center), zoom=spec.zoom, width=spec.width, height=spec.height
    )


def _session_or_404(project_id: str):
    session = _services().sessions.get(project_key(project_id))
    if session is None:
        return None, (jsonify({"error": "No alignment session open for this project"}), 404)
    return session, None


def _session_response(session: AlignmentSession, status: int = 200):
    with session.lock:
        body = session.to_dict()
    return jsonify(body), status


@api.route("/api/health", methods=["GET"])
def health():
    services = _services()
    return jsonify({
        "ok": True,
        "storageReady": bool(services.settings.signing_base_url),
        "sessions": len(services.sessions),
    })


@api.route("/api/projects/<project_id>/map-config", methods=["GET"])
def read_map_config(project_id: str):
    """Saved overlay, or the default one when the project has none yet."""
    try:
        config, is_default = _services().store.load_or_default(
            project_id, request.args.get("layoutImage") or None
        )
    except PersistenceError as e:
        return jsonify({"error": str(e)}), 500
    return jsonify({**config.to_wire(), "isDefault": is_default})


@api.route("/api/projects/<project_id>/map-config", methods=["PUT"])
def write_map_config(project_id: str):
    config = MapConfig(**_json_body())
    try:
        _services().store.save(project_id, config)
    except PersistenceError as e:
        return jsonify({"error": str(e)}), 500
    return jsonify({"ok": True, "projectId": project_key(project_id), "mapConfig": config.to_wire()})


@api.route("/api/projects/<project_id>/map-config", methods=["DELETE"])
def delete_map_config(project_id: str):
    try:
        removed = _services().store.delete(project_id)
    except PersistenceError as e:
        return jsonify({"error": str(e)}), 500
    if not removed:
        return jsonify({"error": "Map not found"}), 404
    return jsonify({"ok": True})


@api.route("/api/projects/<project_id>/alignment", methods=["POST"])
def open_alignment(project_id: str):
    """Start an alignment tool from the saved overlay (or the default one)."""
    services = _services()
    req = OpenAlignmentRequest(**_json_body())
    safe_id = project_key(project_id)

    try:
        config, is_default = services.store.load_or_default(safe_id, req.layout_image)
    except PersistenceError as e:
        return jsonify({"error": str(e)}), 500

    viewport = _viewport(req.viewport)
    surface = (viewport.project, viewport.unproject) if viewport else (None, None)
    controller = OverlayAlignmentController.from_config(config, *surface)

    images = LatestImageResolution(services.resolver, services.settings.placeholder_image_url)
    session = services.sessions.open(
        AlignmentSession(safe_id, controller, images, markers_enabled=req.markers)
    )
    with session.lock:
        session.sync_image()
        body = session.to_dict()
    body["isDefault"] = is_default
    return jsonify(body), 201


@api.route("/api/projects/<project_id>/alignment", methods=["GET"])
def read_alignment(project_id: str):
    session, error = _session_or_404(project_id)
    if error:
        return error
    try:
        wait = float(request.args.get("wait", 0))
    except ValueError:
        return jsonify({"error": "wait must be a number of seconds"}), 400
    session.settle(min(wait, 30.0))
    return _session_response(session)


@api.route("/api/projects/<project_id>/alignment", methods=["PATCH"])
def update_alignment(project_id: str):
    session, error = _session_or_404(project_id)
    if error:
        return error
    update = AlignmentUpdate(**_json_body())

    with session.lock:
        controller = session.controller
        viewport = _viewport(update.viewport)
        if viewport is not None:
            controller.use_surface(viewport.project, viewport.unproject)
        if update.scale is not None:
            controller.set_scale(update.scale)
        if update.rotation is not None:
            controller.set_rotation(update.rotation)
        if update.flip_h is not None:
            controller.set_flip_horizontal(update.flip_h)
        if update.flip_v is not None:
            controller.set_flip_vertical(update.flip_v)
        if update.opacity is not None:
            controller.set_opacity(update.opacity)
        if update.image_url is not None:
            controller.set_image(update.image_url)
            session.sync_image()
    return _session_response(session)


@api.route("/api/projects/<project_id>/alignment/corners", methods=["POST"])
def edit_corner(project_id: str):
    session, error = _session_or_404(project_id)
    if error:
        return error
    edit = CornerEdit(**_json_body())
    with session.lock:
        session.controller.set_raw_corner(edit.index, edit.key, edit.value)
    return _session_response(session)


@api.route("/api/projects/<project_id>/alignment/markers", methods=["POST"])
def drag_markers(project_id: str):
    session, error = _session_or_404(project_id)
    if error:
        return error
    drag = MarkerDrag(**_json_body())
    with session.lock:
        if drag.positions is not None:
            session.controller.drag_markers(drag.positions)
        elif drag.index is not None and drag.position is not None:
            session.controller.drag_marker(drag.index, drag.position)
        else:
            return jsonify({"error": "positions, or index and position, are required"}), 400
    return _session_response(session)


@api.route("/api/projects/<project_id>/alignment/commit", methods=["POST"])
def commit_alignment(project_id: str):
    """Bake the current transform and save it as the project's map."""
    session, error = _session_or_404(project_id)
    if error:
        return error
    with session.lock:
        config = session.controller.commit()
        try:
            _services().store.save(session.project_id, config)
        except PersistenceError as e:
            # Session stays open so the admin can retry without redoing corners.
            return jsonify({"error": str(e), "state": session.to_dict()}), 500
        body = session.to_dict()
    body["mapConfig"] = config.to_wire()
    body["reoriented"] = session.controller.reoriented
    return jsonify(body)


@api.route("/api/projects/<project_id>/alignment", methods=["DELETE"])
def close_alignment(project_id: str):
    if not _services().sessions.discard(project_key(project_id)):
        return jsonify({"error": "No alignment session open for this project"}), 404
    return jsonify({"ok": True})


@api.route("/api/blobs/<token>", methods=["GET"])
def serve_blob(token: str):
    """Serve a locally cached image by the blob: URL it was resolved to."""
    path = _services().resolver.registry.lookup(f"{BLOB_PREFIX}{token}")
    if path is None or not path.is_file():
        return jsonify({"error": "not found"}), 404
    return send_file(path)


def _bad_request(e):
    return jsonify({"error": str(e)}), 400


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[MapConfigStore] = None,
    resolver: Optional[ImageReferenceResolver] = None,
) -> Flask:
    settings = settings or Settings.from_env()
    flask_app = Flask(__name__)
    CORS(flask_app)
    flask_app.extensions["plotmap"] = Services(settings, store, resolver)
    flask_app.register_blueprint(api)
    flask_app.register_error_handler(ConfigurationError, _bad_request)
    flask_app.register_error_handler(ValidationError, _bad_request)
    return flask_app


def main() -> None:
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    create_app(settings).run(debug=False, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
