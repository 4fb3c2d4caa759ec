# Overview: JSON envelope helpers shared by the API routes.

from __future__ import annotations

from flask import jsonify, request

from .errors import AppError, ValidationError


def success(data=None, status: int = 200, pagination: dict | None = None, message: str | None = None):
    """{"success": true, "data": ...[, "pagination": ...][, "message": ...]}"""
    body = {"success": True, "data": data}
    if pagination is not None:
        body["pagination"] = pagination
    if message:
        body["message"] = message
    return jsonify(body), status


def failure(error: AppError):
    return jsonify(error.to_dict()), error.status_code


def server_error():
    return jsonify({"success": False, "error": "Internal server error"}), 500


def json_body() -> dict:
    """Request JSON object; anything else (array, scalar, malformed) is a 400."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def query_int(name: str):
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    if not raw.strip().isdigit():
        raise ValidationError(f"{name} must be an integer")
    return int(raw)
