from flask import Blueprint, jsonify, request
from sqlalchemy.orm.exc import StaleDataError

from errors import Conflict, NotAuthorized, ValidationFailed
from models import APPROVED
from services.approval import (
    ROLE_TIERS,
    can_approve,
    create_request,
    get_request,
    get_request_for_update,
    pending_for,
    record_approval,
    requests_for_student,
)
from services.qr import issue_qr
from routes.session import require_role

outings_bp = Blueprint("outings", __name__)

STAFF_ROLES = ("floor-incharge", "hostel-incharge", "warden")


# --- POST /outings ------------------------------------------------------
# Body: { purpose, outing_date, outing_time, return_time, return_date? }
@outings_bp.route("/outings", methods=["POST"])
@require_role("student")
def submit_outing(user):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationFailed("JSON body required")

    required = ["purpose", "outing_date", "outing_time", "return_time"]
    missing = [f for f in required if not data.get(f)]
    if missing:
        raise ValidationFailed(f"Missing fields: {', '.join(missing)}")

    req = create_request(
        user,
        purpose=data["purpose"],
        outing_date=data["outing_date"],
        outing_time=data["outing_time"],
        return_time=data["return_time"],
        return_date=data.get("return_date"),
    )
    return jsonify({"success": True, "request": req.to_dict()}), 201


@outings_bp.route("/outings/mine", methods=["GET"])
@require_role("student")
def my_outings(user):
    requests = requests_for_student(user)
    return jsonify({"success": True, "requests": [r.to_dict(include_qr=True) for r in requests]})


# --- GET /outings/pending -----------------------------------------------
# Queue for the logged-in incharge/warden, scoped to their block/floor
@outings_bp.route("/outings/pending", methods=["GET"])
@require_role(*STAFF_ROLES)
def pending_outings(user):
    return jsonify({"success": True, "requests": [r.to_dict() for r in pending_for(user)]})


@outings_bp.route("/outings/<int:request_id>", methods=["GET"])
@require_role()
def get_outing(user, request_id):
    req = get_request(request_id)
    if user.role == "student" and req.student_id != user.id:
        raise NotAuthorized("Students can only view their own requests")
    data = req.to_dict(include_qr=user.role == "student")
    data["history"] = [e.to_dict() for e in req.events]
    return jsonify({"success": True, "request": data})


# --- POST /outings/<id>/decision ----------------------------------------
# Body: { decision: "approve" | "deny", remarks? }
# The warden's approval also issues the gate codes.
@outings_bp.route("/outings/<int:request_id>/decision", methods=["POST"])
@require_role(*STAFF_ROLES)
def decide_outing(user, request_id):
    data = request.get_json(silent=True) or {}
    decision = data.get("decision")
    if decision not in ("approve", "deny"):
        raise ValidationFailed('decision must be "approve" or "deny"')

    tier = ROLE_TIERS[user.role]
    try:
        req = get_request_for_update(request_id)
        if not req.is_terminal and not can_approve(user, tier, req):
            raise NotAuthorized(
                f"{user.role} cannot act on this request at stage {req.approval_stage}"
            )
        record_approval(req, tier, user, decision == "approve", data.get("remarks", ""))
        if req.status == APPROVED:
            issue_qr(req)
    except StaleDataError as e:
        raise Conflict() from e

    return jsonify({"success": True, "request": req.to_dict()}), 200


# --- POST /outings/<id>/qr ----------------------------------------------
# Regenerates the codes; old ones stop resolving
@outings_bp.route("/outings/<int:request_id>/qr", methods=["POST"])
@require_role("warden")
def reissue_qr(user, request_id):
    req = issue_qr(get_request_for_update(request_id))
    return jsonify({"success": True, "request": req.to_dict(include_qr=True)}), 200
