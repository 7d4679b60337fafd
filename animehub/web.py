# animehub/web.py
import csv
import io
import logging

from flask import Blueprint, Response, current_app, jsonify, request

from animehub.service import (REPORT_FIELDS, AnimeService, ConflictError, DuplicateError,
                              NotFoundError, ValidationError)

logger = logging.getLogger(__name__)

bp = Blueprint("api", __name__, url_prefix="/api")  # blueprint name = 'api'

def register_routes(app, service: AnimeService):
    """
    Register blueprint and ensure SERVICE is in app.config.
    Call this once during app creation (run.create_app does this).
    """
    if "SERVICE" not in app.config:
        app.config["SERVICE"] = service
    app.register_blueprint(bp)
    logger.debug("Registered blueprint 'api' and injected SERVICE")

def _problem(title: str, status: int, detail: str):
    return jsonify({"type": "about:blank", "title": title, "status": status, "detail": detail}), status

def register_error_handlers(app):
    """Centralized handlers for service exceptions; every error body is a problem detail."""
    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        logger.warning("ValidationError: %s", e)
        return _problem("Invalid Request", 400, str(e))

    @app.errorhandler(NotFoundError)
    def handle_not_found(e):
        logger.warning("Resource not found: %s", e)
        return _problem("Resource Not Found", 404, str(e))

    @app.errorhandler(DuplicateError)
    def handle_duplicate(e):
        logger.warning("Duplicate record: %s", e)
        return _problem("Duplicate Record", 409, str(e))

    @app.errorhandler(ConflictError)
    def handle_conflict(e):
        logger.warning("Conflict: %s", e)
        return _problem("Conflict", 409, str(e))

# helper to get service instance
def current_service() -> AnimeService:
    return current_app.config["SERVICE"]

def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data

# -----------------------
# Serialization
# -----------------------
def author_to_dict(a) -> dict:
    return {"id": a.id, "name": a.name}

def anime_to_dict(a) -> dict:
    return {"id": a.id, "title": a.title, "score": a.score,
            "releaseYear": a.release_year, "authorId": a.author_id}

def anime_author_to_dict(a, author) -> dict:
    return {"id": a.id, "title": a.title, "score": a.score, "releaseYear": a.release_year,
            "author": author_to_dict(author) if author else None}

# -----------------------
# Authors
# -----------------------
@bp.route("/author", methods=["GET"])
def authors():
    return jsonify([author_to_dict(a) for a in current_service().list_authors()])

@bp.route("/author", methods=["POST"])
def author_new():
    body = json_body()
    created = current_service().create_author(body.get("name"))
    return jsonify(author_to_dict(created)), 201

@bp.route("/author/<author_id>", methods=["PUT"])
def author_edit(author_id: str):
    body = json_body()
    updated = current_service().update_author(author_id, body.get("name"))
    return jsonify(author_to_dict(updated))

@bp.route("/author/<author_id>", methods=["DELETE"])
def author_delete(author_id: str):
    current_service().delete_author(author_id)
    return "", 204

# -----------------------
# Animes
# -----------------------
@bp.route("/anime", methods=["POST"])
def anime_new():
    body = json_body()
    created = current_service().create_anime(body.get("title"), body.get("releaseYear"),
                                             body.get("score"), body.get("authorId"))
    return jsonify(anime_to_dict(created)), 201

@bp.route("/anime/<anime_id>", methods=["GET"])
def anime_detail(anime_id: str):
    anime, author = current_service().get_anime(anime_id)
    return jsonify(anime_author_to_dict(anime, author))

@bp.route("/anime/<anime_id>", methods=["PUT"])
def anime_edit(anime_id: str):
    body = json_body()
    updated = current_service().update_anime(anime_id, body.get("title"), body.get("releaseYear"),
                                             body.get("score"), body.get("authorId"))
    return jsonify(anime_to_dict(updated))

@bp.route("/anime/<anime_id>", methods=["DELETE"])
def anime_delete(anime_id: str):
    current_service().delete_anime(anime_id)
    return "", 204

@bp.route("/anime/_list", methods=["POST"])
def anime_list():
    body = json_body()
    page = current_service().list_animes(author_id=body.get("authorId"), release_year=body.get("releaseYear"),
                                         page=body.get("page", 0), size=body.get("size", 20))
    return jsonify({"list": [anime_to_dict(a) for a in page.items], "totalPages": page.total_pages})

# -----------------------
# Report / Import endpoints
# -----------------------
@bp.route("/anime/_report", methods=["POST"])
def anime_report():
    body = json_body()
    rows = current_service().report_rows(author_id=body.get("authorId"), release_year=body.get("releaseYear"))
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=REPORT_FIELDS, lineterminator="\n")
    writer.writeheader()
    for r in rows:
        writer.writerow(r)
    return Response(output.getvalue().encode("utf-8"), mimetype="text/csv",
                    headers={"Content-Disposition": 'attachment; filename="anime_report.csv"'})

@bp.route("/anime/upload", methods=["POST"])
def anime_upload():
    file = request.files.get("file")
    if file is None:
        raise ValidationError("Required part 'file' is not present")
    result = current_service().import_anime_from_file(file.stream, file.filename, file.content_type)
    return jsonify(result.to_dict())
