"""
App Store server notification webhooks

    POST /notifications/production
    POST /notifications/sandbox
    Body: { "signedPayload": "<JWS>" }

Both endpoints run the same pipeline; only the environment label differs.
400 for missing/unverifiable payloads (nothing is dispatched), 500 if a handler blows up.
"""

from __future__ import annotations

from flask import abort, current_app, jsonify, request

from services.app_store import (
    ENVIRONMENTS,
    NotificationDecodeError,
    dispatch,
    verify_notification,
)
from . import bp  # blueprint defined in notifications/__init__.py (url_prefix="/notifications")


@bp.route("/<environment>", methods=["POST"])
def receive(environment: str):
    if environment not in ENVIRONMENTS:
        abort(404)

    data = request.get_json(silent=True) or {}
    signed_payload = data.get("signedPayload") if isinstance(data, dict) else None
    if not signed_payload:
        return jsonify({"error": "Missing signed payload"}), 400

    try:
        notification = verify_notification(signed_payload, environment)
    except NotificationDecodeError as e:
        current_app.logger.warning("[%s] Notification rejected: %s", environment, e)
        body = {"error": "Invalid notification"}
        if current_app.config.get("EXPOSE_ERROR_DETAIL"):
            body["detail"] = str(e)
        return jsonify(body), 400

    current_app.logger.info(
        "%s notification received: %s",
        environment.capitalize(),
        {
            "notificationType": notification.get("notificationType"),
            "subtype": notification.get("subtype"),
            "notificationUUID": notification.get("notificationUUID"),
        },
    )

    try:
        dispatch(notification, environment)
    except Exception as e:
        current_app.logger.exception("Error processing %s notification: %s", environment, e)
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"status": "success"}), 200
