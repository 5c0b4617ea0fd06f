"""
Gate verification: check-out and check-in scans against issued codes.
A failed scan never touches tracking state.
"""

import hmac
import json
import logging
import re

from errors import OutOfSequenceScan, RequestNotApproved, UnresolvedCode
from models import db, OutingRequest, GateActivity, APPROVED, utcnow
from services.qr import OUTGOING, INCOMING, CODE_PREFIXES, sign

logger = logging.getLogger(__name__)

PREFIX_KINDS = {prefix: kind for kind, prefix in CODE_PREFIXES.items()}
QR_ID_PATTERN = re.compile(r"(OUT|IN)_(\d+)_(\d+)", re.ASCII)


def parse_scan(qr_data):
    """
    Extract (kind, qr id) from scanned data.

    Accepts the bare code string (OUT_<id>_<ms> / IN_<id>_<ms>), the JSON
    payload embedded in the image, or that payload already decoded to a
    dict. A payload whose signature does not match is rejected.
    """
    payload = None
    if isinstance(qr_data, dict):
        payload = qr_data
    elif isinstance(qr_data, str) and qr_data.strip().startswith("{"):
        try:
            payload = json.loads(qr_data)
        except ValueError:
            raise UnresolvedCode("Invalid QR code JSON format")
    elif isinstance(qr_data, str):
        qr_id = qr_data.strip()
    else:
        raise UnresolvedCode("Invalid QR data format")

    if payload is not None:
        qr_id = payload.get("qrId")
        if not isinstance(qr_id, str):
            raise UnresolvedCode("Invalid QR code - missing QR ID")

    match = QR_ID_PATTERN.fullmatch(qr_id)
    if match is None:
        raise UnresolvedCode("QR code not found or invalid")

    if payload is not None:
        signature = payload.get("signature")
        if not isinstance(signature, str):
            raise UnresolvedCode("QR code signature mismatch")
        given = signature.encode("utf-8", "surrogatepass")
        if not hmac.compare_digest(given, sign(qr_id).encode()):
            raise UnresolvedCode("QR code signature mismatch")

    return PREFIX_KINDS[match.group(1)], qr_id


def resolve_code(kind, qr_id, lock=True):
    column = OutingRequest.qr_outgoing_id if kind == OUTGOING else OutingRequest.qr_incoming_id
    query = db.session.query(OutingRequest).filter(column == qr_id)
    if lock:
        query = query.with_for_update().populate_existing()
    req = query.first()
    if req is None:
        raise UnresolvedCode("QR code not found or invalid")
    return req


def scan_problem(kind, req):
    """The error a scan of this kind would hit right now, or None."""
    if req.status != APPROVED:
        return RequestNotApproved(f"Outing request is {req.status}")
    if kind == OUTGOING and req.checked_out_at is not None:
        return OutOfSequenceScan("Student has already checked out")
    if kind == INCOMING:
        if req.checked_out_at is None:
            return OutOfSequenceScan("Student has not checked out yet")
        if req.checked_in_at is not None:
            return OutOfSequenceScan("Student has already checked in")
    return None


def preview_scan(qr_data):
    """
    Resolve a code without recording anything.
    Returns (kind, request, problem) where problem is the error a real scan
    would raise, or None when it would go through.
    """
    kind, qr_id = parse_scan(qr_data)
    req = resolve_code(kind, qr_id, lock=False)
    return kind, req, scan_problem(kind, req)


def verify_scan(qr_data, gate_user, location="Main Gate"):
    """
    Validate a scan and record the check-out or check-in.
    Returns (kind, request).
    """
    kind, qr_id = parse_scan(qr_data)
    req = resolve_code(kind, qr_id)

    problem = scan_problem(kind, req)
    if problem is not None:
        logger.warning("Scan %s refused for request %s: %s", qr_id, req.id, problem.message)
        raise problem

    now = utcnow()
    if kind == OUTGOING:
        req.checked_out_at = now
        req.checked_out_by = gate_user.id
    else:
        req.checked_in_at = now
        req.checked_in_by = gate_user.id

    db.session.add(GateActivity(
        request_id=req.id,
        student_id=req.student_id,
        kind="out" if kind == OUTGOING else "in",
        location=location or "Main Gate",
        qr_id=qr_id,
        scanned_by=gate_user.id,
        scanned_at=now,
    ))
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Gate %s for request %s at %s by %s", kind, req.id, location, gate_user.id)
    return kind, req


def recent_activity(limit=20):
    return (
        GateActivity.query.order_by(GateActivity.scanned_at.desc(), GateActivity.id.desc())
        .limit(limit)
        .all()
    )


def currently_out():
    """Approved requests whose student has checked out but not back in."""
    return (
        OutingRequest.query.filter(
            OutingRequest.status == APPROVED,
            OutingRequest.checked_out_at.isnot(None),
            OutingRequest.checked_in_at.is_(None),
        )
        .order_by(OutingRequest.checked_out_at.desc(), OutingRequest.id.desc())
        .all()
    )
