"""
Approval workflow for outing requests.
Floor incharge -> hostel incharge -> warden. Any tier may deny, which ends
the workflow. Status and stage are always re-derived from the tier flags.
"""

import logging
from datetime import datetime

from errors import InvalidTransition, NotFound, ValidationFailed
from models import (
    db, OutingRequest, ApprovalEvent, User,
    FLOOR, HOSTEL, WARDEN, TIERS, DENIED, TERMINAL_STATUSES, utcnow,
)

logger = logging.getLogger(__name__)

# role tag that may act on each tier
TIER_ROLES = {
    FLOOR: "floor-incharge",
    HOSTEL: "hostel-incharge",
    WARDEN: "warden",
}
ROLE_TIERS = {role: tier for tier, role in TIER_ROLES.items()}
TIER_STAGES = {FLOOR: 1, HOSTEL: 2, WARDEN: 3}


def _parse_date(value, field):
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ValidationFailed(f"{field} must be a date in YYYY-MM-DD format")


def _parse_time(value, field):
    try:
        return datetime.strptime(value, "%H:%M").strftime("%H:%M")
    except (TypeError, ValueError):
        raise ValidationFailed(f"{field} must be a time in HH:MM format")


def create_request(student, purpose, outing_date, outing_time, return_time, return_date=None):
    """
    Called when a student submits an outing request.
    Dates are YYYY-MM-DD strings, times HH:MM. Return date defaults to the
    outing date.
    """
    if student is None or student.role != "student":
        raise ValidationFailed("Only students can submit outing requests")
    if not purpose or not purpose.strip():
        raise ValidationFailed("purpose is required")

    out_date = _parse_date(outing_date, "outing_date")
    back_date = _parse_date(return_date, "return_date") if return_date else out_date
    out_time = _parse_time(outing_time, "outing_time")
    back_time = _parse_time(return_time, "return_time")
    if (back_date, back_time) <= (out_date, out_time):
        raise ValidationFailed("Return must be after the outing starts")

    req = OutingRequest(
        student_id=student.id,
        purpose=purpose.strip(),
        outing_date=out_date,
        outing_time=out_time,
        return_date=back_date,
        return_time=back_time,
        parent_phone=student.parent_phone,
        hostel_block=student.hostel_block,
        floor=student.floor,
    )
    db.session.add(req)
    db.session.commit()
    logger.info("Outing request %s created by student %s", req.id, student.id)
    return req


def get_request(request_id):
    req = db.session.get(OutingRequest, request_id)
    if req is None:
        raise NotFound(f"Outing request {request_id} not found")
    return req


def get_request_for_update(request_id):
    """Load a request with a row lock for a read-modify-write."""
    req = (
        db.session.query(OutingRequest)
        .filter_by(id=request_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if req is None:
        raise NotFound(f"Outing request {request_id} not found")
    return req


def can_approve(actor, tier, req):
    """
    Capability check run before record_approval.
    The actor's role must own the tier, the request must be waiting on that
    tier and the actor's block/floor assignment must cover the request.
    """
    if actor is None or tier not in TIERS:
        return False
    if actor.role != TIER_ROLES[tier]:
        return False
    if req.is_terminal or req.approval_stage != TIER_STAGES[tier]:
        return False
    if tier == FLOOR:
        return actor.hostel_block == req.hostel_block and actor.floor == req.floor
    if tier == HOSTEL:
        return actor.hostel_block == req.hostel_block
    return True


def record_approval(req, tier, acting_user, approved, remarks=""):
    """
    Record one tier's decision and commit.

    Approval sets the tier's flag, timestamp and actor and re-derives
    status/stage. Denial moves the request straight to denied and leaves the
    stage where it was. Terminal requests raise InvalidTransition untouched.
    """
    if tier not in TIERS:
        raise ValidationFailed(f"Unknown approval tier: {tier}")
    if req.is_terminal:
        logger.warning(
            "Rejected %s decision on request %s: already %s", tier, req.id, req.status
        )
        raise InvalidTransition(f"Request is already {req.status}")

    now = utcnow()
    if approved:
        setattr(req, f"{tier}_approved", True)
        setattr(req, f"{tier}_approved_at", now)
        setattr(req, f"{tier}_approved_by", acting_user.id)
        req.refresh_status()
    else:
        req.status = DENIED

    db.session.add(ApprovalEvent(
        request_id=req.id,
        tier=tier,
        decision="approved" if approved else "denied",
        actor_id=acting_user.id,
        remarks=remarks or "",
        created_at=now,
    ))
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Request %s %s by %s (%s); status=%s stage=%s",
        req.id, "approved" if approved else "denied", tier, acting_user.id,
        req.status, req.approval_stage,
    )
    return req


def pending_for(actor):
    """Requests waiting on the actor's tier within the actor's scope."""
    tier = ROLE_TIERS.get(actor.role)
    if tier is None:
        return []

    query = OutingRequest.query.filter(
        OutingRequest.approval_stage == TIER_STAGES[tier],
        OutingRequest.status.notin_(TERMINAL_STATUSES),
    )
    if tier == FLOOR:
        query = query.filter_by(hostel_block=actor.hostel_block, floor=actor.floor)
    elif tier == HOSTEL:
        query = query.filter_by(hostel_block=actor.hostel_block)
    return query.order_by(OutingRequest.created_at.desc(), OutingRequest.id.desc()).all()


def requests_for_student(student):
    return (
        OutingRequest.query.filter_by(student_id=student.id)
        .order_by(OutingRequest.created_at.desc(), OutingRequest.id.desc())
        .all()
    )


def get_user(user_id):
    return db.session.get(User, user_id)
