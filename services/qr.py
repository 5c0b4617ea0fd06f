"""
QR issuance for fully approved outing requests.
Each issue produces an outgoing (check-out) and incoming (check-in) code,
both PNG data URLs over a signed JSON payload.
"""

import base64
import hashlib
import hmac
import json
import logging
from io import BytesIO

import qrcode
from flask import current_app

from errors import EncodingFailure, NotFullyApproved
from models import db, APPROVED, utcnow

logger = logging.getLogger(__name__)

OUTGOING = "outgoing"
INCOMING = "incoming"
CODE_PREFIXES = {OUTGOING: "OUT", INCOMING: "IN"}


def make_qr_id(kind, request_id, issued_at):
    """OUT_<request id>_<issued ms> or IN_<request id>_<issued ms>"""
    millis = int(issued_at.timestamp() * 1000)
    return f"{CODE_PREFIXES[kind]}_{request_id}_{millis}"


def sign(qr_id):
    secret = current_app.config["QR_SECRET"].encode()
    return hmac.new(secret, qr_id.encode(), hashlib.sha256).hexdigest()


def build_payload(req):
    student = req.student
    return {
        "requestId": req.id,
        "name": student.name,
        "rollNumber": student.roll_no,
        "phoneNumber": student.phone,
        "parentPhoneNumber": req.parent_phone or student.parent_phone,
        "branch": student.branch,
        "roomNumber": student.room_number,
        "outingDate": req.outing_date.isoformat(),
        "outTime": req.outing_time,
        "returnDate": req.return_date.isoformat(),
        "inTime": req.return_time,
        "status": req.status,
        "wardenApprovedAt": req.warden_approved_at.isoformat() if req.warden_approved_at else None,
    }


def encode_image(payload):
    """Encode a payload dict as a base64 PNG data URL."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        box_size=10,
        border=1,
    )
    qr.add_data(json.dumps(payload, sort_keys=True))
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


def issue_qr(req):
    """
    Generate and store both gate codes for a fully approved request.

    Raises NotFullyApproved before the warden's approval. Calling it again
    on an issued request regenerates: new ids, images and timestamp replace
    the old ones and the old codes stop resolving. Nothing is written if
    encoding fails.
    """
    if req.status != APPROVED or not req.warden_approved:
        logger.warning("QR issue refused for request %s (status=%s)", req.id, req.status)
        raise NotFullyApproved()

    issued_at = utcnow()
    base = build_payload(req)
    codes = {}
    try:
        for kind in (OUTGOING, INCOMING):
            qr_id = make_qr_id(kind, req.id, issued_at)
            payload = dict(base, type=kind, qrId=qr_id, signature=sign(qr_id))
            codes[kind] = (qr_id, encode_image(payload))
    except Exception as e:
        logger.exception("QR encoding failed for request %s", req.id)
        raise EncodingFailure(f"Failed to generate QR codes: {e}") from e

    req.qr_outgoing_id, req.qr_outgoing_data = codes[OUTGOING]
    req.qr_incoming_id, req.qr_incoming_data = codes[INCOMING]
    req.qr_generated_at = issued_at
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("QR codes issued for request %s (%s)", req.id, req.qr_outgoing_id)
    return req
