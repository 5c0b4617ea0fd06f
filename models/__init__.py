from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone

db = SQLAlchemy()

# status values
PENDING_FLOOR = "pending_floor_incharge"
PENDING_HOSTEL = "pending_hostel_incharge"
PENDING_WARDEN = "pending_warden"
APPROVED = "approved"
DENIED = "denied"
TERMINAL_STATUSES = (APPROVED, DENIED)

# approval tiers, in chain order
FLOOR = "floor"
HOSTEL = "hostel"
WARDEN = "warden"
TIERS = (FLOOR, HOSTEL, WARDEN)


def utcnow():
    return datetime.now(timezone.utc)


def derive_status(floor_approved, hostel_approved, warden_approved):
    """Map the three tier flags to (status, stage).

    Highest tier wins, so the result only depends on which flags are set.
    """
    if warden_approved:
        return APPROVED, 3
    if hostel_approved:
        return PENDING_WARDEN, 3
    if floor_approved:
        return PENDING_HOSTEL, 2
    return PENDING_FLOOR, 1


def _iso(value):
    return value.isoformat() if value else None


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), nullable=False)
    email = db.Column(db.String(120), unique=True)
    role = db.Column(db.String(20), nullable=False)  # student, floor-incharge, hostel-incharge, warden, gate
    roll_no = db.Column(db.String(20))               # only for students
    phone = db.Column(db.String(20))
    parent_phone = db.Column(db.String(20))          # only for students
    branch = db.Column(db.String(40))
    room_number = db.Column(db.String(10))
    # Students live here; incharges are assigned here
    hostel_block = db.Column(db.String(10))
    floor = db.Column(db.String(20))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "roll_no": self.roll_no,
            "phone": self.phone,
            "branch": self.branch,
            "room_number": self.room_number,
            "hostel_block": self.hostel_block,
            "floor": self.floor,
        }


class OutingRequest(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    purpose = db.Column(db.Text, nullable=False)
    outing_date = db.Column(db.Date, nullable=False)
    outing_time = db.Column(db.String(5), nullable=False)  # HH:MM
    return_date = db.Column(db.Date, nullable=False)
    return_time = db.Column(db.String(5), nullable=False)  # HH:MM
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    # cached student info at time of request
    parent_phone = db.Column(db.String(20))
    hostel_block = db.Column(db.String(10))
    floor = db.Column(db.String(20))

    status = db.Column(db.String(30), default=PENDING_FLOOR, nullable=False)
    approval_stage = db.Column(db.Integer, default=1, nullable=False)

    floor_approved = db.Column(db.Boolean, default=False, nullable=False)
    floor_approved_at = db.Column(db.DateTime(timezone=True))
    floor_approved_by = db.Column(db.Integer, db.ForeignKey("user.id"))

    hostel_approved = db.Column(db.Boolean, default=False, nullable=False)
    hostel_approved_at = db.Column(db.DateTime(timezone=True))
    hostel_approved_by = db.Column(db.Integer, db.ForeignKey("user.id"))

    warden_approved = db.Column(db.Boolean, default=False, nullable=False)
    warden_approved_at = db.Column(db.DateTime(timezone=True))
    warden_approved_by = db.Column(db.Integer, db.ForeignKey("user.id"))

    # issued codes; both ids change on every (re)issue
    qr_outgoing_id = db.Column(db.String(64), index=True)
    qr_outgoing_data = db.Column(db.Text)
    qr_incoming_id = db.Column(db.String(64), index=True)
    qr_incoming_data = db.Column(db.Text)
    qr_generated_at = db.Column(db.DateTime(timezone=True))

    checked_out_at = db.Column(db.DateTime(timezone=True))
    checked_out_by = db.Column(db.Integer, db.ForeignKey("user.id"))
    checked_in_at = db.Column(db.DateTime(timezone=True))
    checked_in_by = db.Column(db.Integer, db.ForeignKey("user.id"))

    version = db.Column(db.Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    student = db.relationship("User", foreign_keys=[student_id])
    events = db.relationship(
        "ApprovalEvent", backref="request", order_by="ApprovalEvent.id"
    )

    def __init__(self, **kwargs):
        # column defaults only apply at flush; the state machine reads these before that
        kwargs.setdefault("status", PENDING_FLOOR)
        kwargs.setdefault("approval_stage", 1)
        for tier in TIERS:
            kwargs.setdefault(f"{tier}_approved", False)
        super().__init__(**kwargs)

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    @property
    def has_qr(self):
        return bool(self.qr_outgoing_data)

    def approval_flags(self):
        return self.floor_approved, self.hostel_approved, self.warden_approved

    def refresh_status(self):
        self.status, self.approval_stage = derive_status(*self.approval_flags())

    def approvals_dict(self):
        return {
            tier: {
                "approved": getattr(self, f"{tier}_approved"),
                "approved_at": _iso(getattr(self, f"{tier}_approved_at")),
                "approved_by": getattr(self, f"{tier}_approved_by"),
            }
            for tier in TIERS
        }

    def to_dict(self, include_qr=False):
        data = {
            "id": self.id,
            "student_id": self.student_id,
            "purpose": self.purpose,
            "outing_date": self.outing_date.isoformat(),
            "outing_time": self.outing_time,
            "return_date": self.return_date.isoformat(),
            "return_time": self.return_time,
            "hostel_block": self.hostel_block,
            "floor": self.floor,
            "status": self.status,
            "approval_stage": self.approval_stage,
            "approvals": self.approvals_dict(),
            "tracking": {
                "check_out": {"at": _iso(self.checked_out_at), "by": self.checked_out_by},
                "check_in": {"at": _iso(self.checked_in_at), "by": self.checked_in_by},
            },
            "qr_generated_at": _iso(self.qr_generated_at),
            "created_at": _iso(self.created_at),
        }
        if include_qr and self.has_qr:
            data["qr_code"] = {
                "outgoing": {"qr_id": self.qr_outgoing_id, "data": self.qr_outgoing_data},
                "incoming": {"qr_id": self.qr_incoming_id, "data": self.qr_incoming_data},
            }
        return data


class ApprovalEvent(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey("outing_request.id"), nullable=False)
    tier = db.Column(db.String(10), nullable=False)
    decision = db.Column(db.String(10), nullable=False)  # approved/denied
    actor_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    remarks = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "tier": self.tier,
            "decision": self.decision,
            "actor_id": self.actor_id,
            "remarks": self.remarks,
            "created_at": _iso(self.created_at),
        }


class GateActivity(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey("outing_request.id"), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    kind = db.Column(db.String(3), nullable=False)  # out/in
    location = db.Column(db.String(60), default="Main Gate", nullable=False)
    qr_id = db.Column(db.String(64))
    scanned_by = db.Column(db.Integer, db.ForeignKey("user.id"))
    scanned_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "request_id": self.request_id,
            "student_id": self.student_id,
            "kind": self.kind,
            "location": self.location,
            "qr_id": self.qr_id,
            "scanned_by": self.scanned_by,
            "scanned_at": _iso(self.scanned_at),
        }
