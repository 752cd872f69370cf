# Overview: Image upload routes and serving of stored files.

from flask import Blueprint, request, current_app, send_from_directory, abort

from ..services import storage_service
from ..services.storage_service import StorageError
from ..decorators import require_auth, require_role

uploads_bp = Blueprint("uploads", __name__)


@uploads_bp.post("/api/uploads")
@require_auth
@require_role("admin", "manager")
def upload_route():
    """Multipart form with a single "file" field. Returns {url, path}."""
    file = request.files.get("file")
    if file is None or not file.filename:
        return {"error": "file is required"}, 400

    try:
        result = storage_service.upload(file.read(), file.filename)
    except StorageError as e:
        return {"error": str(e), "details": e.details}, 400
    except OSError:
        current_app.logger.exception("Failed to store upload")
        return {"error": "Internal server error"}, 500

    return result.to_dict(), 201


@uploads_bp.delete("/api/uploads/<path:path>")
@require_auth
@require_role("admin", "manager")
def delete_upload_route(path: str):
    try:
        deleted = storage_service.delete(path)
    except StorageError as e:
        return {"error": str(e)}, 400
    except OSError:
        current_app.logger.exception("Failed to delete upload %s", path)
        return {"error": "Internal server error"}, 500

    if not deleted:
        return {"error": "File not found"}, 404
    return {"ok": True}, 200


def serve_upload(path: str):
    """Registered by create_app under UPLOAD_URL_PREFIX."""
    try:
        storage_service.resolve_path(path)
    except StorageError:
        abort(404)
    return send_from_directory(current_app.config["UPLOAD_FOLDER"], path)
