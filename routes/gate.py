from flask import Blueprint, jsonify, request

from errors import ValidationFailed
from routes.session import require_role
from services.gate import currently_out, preview_scan, recent_activity, verify_scan

gate_bp = Blueprint("gate", __name__)

GATE_ROLES = ("gate", "warden")
MAX_LOCATION_LENGTH = 60  # GateActivity.location width


def _scan_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationFailed("JSON body required")
    qr_data = data.get("qrData")
    if not qr_data:
        raise ValidationFailed("QR data is required")
    return data, qr_data


# --- POST /gate/scan ----------------------------------------------------
# Body: { qrData, location? }
# qrData is the bare code string or the JSON payload read from the image
@gate_bp.route("/gate/scan", methods=["POST"])
@require_role(*GATE_ROLES)
def scan(user):
    data, qr_data = _scan_body()
    location = data.get("location", "Main Gate")
    if not isinstance(location, str) or not location.strip():
        raise ValidationFailed("location must be a non-empty string")
    if len(location) > MAX_LOCATION_LENGTH:
        raise ValidationFailed(f"location must be at most {MAX_LOCATION_LENGTH} characters")

    kind, req = verify_scan(qr_data, user, location.strip())
    return jsonify({
        "success": True,
        "data": {
            "type": kind,
            "student": req.student.to_dict(),
            "request": req.to_dict(),
        },
    }), 200


# --- POST /gate/qr/validate ---------------------------------------------
# Body: { qrData }
# Looks a code up and says whether a scan would pass; records nothing
@gate_bp.route("/gate/qr/validate", methods=["POST"])
@require_role(*GATE_ROLES)
def validate(user):
    _, qr_data = _scan_body()
    kind, req, problem = preview_scan(qr_data)
    return jsonify({
        "success": True,
        "data": {
            "type": kind,
            "valid": problem is None,
            "reason": problem.code if problem else None,
            "message": problem.message if problem else None,
            "student": req.student.to_dict(),
            "request": req.to_dict(),
        },
    }), 200


@gate_bp.route("/gate/currently-out", methods=["GET"])
@require_role(*GATE_ROLES)
def students_out(user):
    requests = currently_out()
    return jsonify({
        "success": True,
        "count": len(requests),
        "students": [
            {"student": r.student.to_dict(), "request": r.to_dict()} for r in requests
        ],
    })


@gate_bp.route("/gate/activity/recent", methods=["GET"])
@require_role(*GATE_ROLES)
def recent(user):
    limit = request.args.get("limit", 20, type=int)
    limit = max(1, min(limit, 100))
    return jsonify({"success": True, "activity": [a.to_dict() for a in recent_activity(limit)]})
