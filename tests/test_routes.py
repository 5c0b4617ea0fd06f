from unittest import mock

from sqlalchemy.orm.exc import StaleDataError

from base import OutingTestCase
from models import db, GateActivity, OutingRequest, User
from services.qr import issue_qr


class TestOutingRoutes(OutingTestCase):

    def submit(self, **overrides):
        body = {
            "purpose": "Hospital visit",
            "outing_date": "2026-10-20",
            "outing_time": "09:30",
            "return_time": "17:00",
        }
        body.update(overrides)
        self.login(self.student)
        return self.client.post("/outings", json=body)

    def decide(self, user, request_id, decision="approve", remarks=""):
        self.login(user)
        return self.client.post(
            f"/outings/{request_id}/decision", json={"decision": decision, "remarks": remarks}
        )

    def test_health(self):
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["status"], "healthy")

    def test_login_required(self):
        resp = self.client.post("/outings", json={})
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.get_json()["error"], "not_authorized")

    def test_submit(self):
        resp = self.submit()
        self.assertEqual(resp.status_code, 201)
        data = resp.get_json()["request"]
        self.assertEqual(data["status"], "pending_floor_incharge")
        self.assertEqual(data["approval_stage"], 1)
        self.assertFalse(data["approvals"]["warden"]["approved"])

    def test_submit_missing_fields(self):
        resp = self.submit(purpose="")
        self.assertEqual(resp.status_code, 400)
        self.assertIn("purpose", resp.get_json()["message"])

    def test_staff_cannot_submit(self):
        self.login(self.warden)
        resp = self.client.post("/outings", json={"purpose": "x"})
        self.assertEqual(resp.status_code, 403)

    def test_full_chain_issues_codes(self):
        request_id = self.submit().get_json()["request"]["id"]

        resp = self.decide(self.floor_incharge, request_id)
        self.assertEqual(resp.get_json()["request"]["status"], "pending_hostel_incharge")
        resp = self.decide(self.hostel_incharge, request_id)
        self.assertEqual(resp.get_json()["request"]["status"], "pending_warden")
        resp = self.decide(self.warden, request_id, remarks="Return on time")
        data = resp.get_json()["request"]
        self.assertEqual((data["status"], data["approval_stage"]), ("approved", 3))
        self.assertIsNotNone(data["qr_generated_at"])

        self.login(self.student)
        mine = self.client.get("/outings/mine").get_json()["requests"]
        self.assertEqual(len(mine), 1)
        self.assertTrue(mine[0]["qr_code"]["outgoing"]["data"].startswith("data:image/png"))

        detail = self.client.get(f"/outings/{request_id}").get_json()["request"]
        self.assertEqual([h["tier"] for h in detail["history"]], ["floor", "hostel", "warden"])
        self.assertEqual(detail["history"][2]["remarks"], "Return on time")

    def test_out_of_turn_decision(self):
        request_id = self.submit().get_json()["request"]["id"]
        resp = self.decide(self.warden, request_id)
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(db.session.get(OutingRequest, request_id).status, "pending_floor_incharge")

    def test_decision_on_denied_request(self):
        request_id = self.submit().get_json()["request"]["id"]
        self.decide(self.floor_incharge, request_id)
        resp = self.decide(self.hostel_incharge, request_id, "deny", "Exams")
        self.assertEqual(resp.get_json()["request"]["status"], "denied")

        resp = self.decide(self.warden, request_id)
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()["error"], "invalid_transition")

    def test_bad_decision_value(self):
        request_id = self.submit().get_json()["request"]["id"]
        resp = self.decide(self.floor_incharge, request_id, "maybe")
        self.assertEqual(resp.status_code, 400)

    def test_unknown_request(self):
        resp = self.decide(self.floor_incharge, 999)
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.get_json()["error"], "not_found")

    def test_pending_queue(self):
        request_id = self.submit().get_json()["request"]["id"]
        self.login(self.floor_incharge)
        resp = self.client.get("/outings/pending")
        self.assertEqual([r["id"] for r in resp.get_json()["requests"]], [request_id])

        self.login(self.hostel_incharge)
        self.assertEqual(self.client.get("/outings/pending").get_json()["requests"], [])

    def test_students_see_only_their_requests(self):
        other = User(name="Other", role="student", hostel_block="B", floor="2nd Floor")
        db.session.add(other)
        db.session.commit()

        request_id = self.submit().get_json()["request"]["id"]
        self.login(other)
        resp = self.client.get(f"/outings/{request_id}")
        self.assertEqual(resp.status_code, 403)

    def test_reissue_requires_full_approval(self):
        request_id = self.submit().get_json()["request"]["id"]
        self.login(self.warden)
        resp = self.client.post(f"/outings/{request_id}/qr")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()["error"], "not_fully_approved")

    def test_encoding_failure_on_final_approval(self):
        request_id = self.submit().get_json()["request"]["id"]
        self.decide(self.floor_incharge, request_id)
        self.decide(self.hostel_incharge, request_id)
        with mock.patch("services.qr.encode_image", side_effect=RuntimeError("encoder down")):
            resp = self.decide(self.warden, request_id)
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.get_json()["error"], "encoding_failure")

        # approval stands; codes can be issued later
        req = db.session.get(OutingRequest, request_id)
        self.assertEqual(req.status, "approved")
        self.assertIsNone(req.qr_outgoing_id)

        self.login(self.warden)
        resp = self.client.post(f"/outings/{request_id}/qr")
        self.assertEqual(resp.status_code, 200)
        self.assertIn("qr_code", resp.get_json()["request"])

    def test_concurrent_decision(self):
        request_id = self.submit().get_json()["request"]["id"]
        with mock.patch("routes.outings.record_approval", side_effect=StaleDataError("stale")):
            resp = self.decide(self.floor_incharge, request_id)
        self.assertEqual(resp.status_code, 409)
        body = resp.get_json()
        self.assertEqual(body["error"], "conflict")
        self.assertFalse(body["success"])
        self.assertEqual(db.session.get(OutingRequest, request_id).status, "pending_floor_incharge")


class TestGateRoutes(OutingTestCase):

    def setUp(self):
        super().setUp()
        self.req = self.approved_request()
        issue_qr(self.req)
        self.login(self.gate)

    def scan(self, qr_data, location="Main Gate"):
        return self.client.post("/gate/scan", json={"qrData": qr_data, "location": location})

    def test_scan_sequence(self):
        out_id, in_id = self.req.qr_outgoing_id, self.req.qr_incoming_id

        resp = self.scan(out_id)
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()["data"]
        self.assertEqual(data["type"], "outgoing")
        self.assertEqual(data["student"]["roll_no"], "22CS041")
        self.assertIsNotNone(data["request"]["tracking"]["check_out"]["at"])

        resp = self.scan(out_id)
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()["error"], "out_of_sequence_scan")

        resp = self.scan(in_id)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["data"]["type"], "incoming")

        activity = self.client.get("/gate/activity/recent").get_json()["activity"]
        self.assertEqual([a["kind"] for a in activity], ["in", "out"])

    def test_missing_qr_data(self):
        resp = self.client.post("/gate/scan", json={})
        self.assertEqual(resp.status_code, 400)

    def test_unknown_code(self):
        resp = self.scan("OUT_1_123")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.get_json()["error"], "unresolved_code")

    def test_students_cannot_scan(self):
        self.login(self.student)
        resp = self.scan(self.req.qr_outgoing_id)
        self.assertEqual(resp.status_code, 403)
        self.assertIsNone(db.session.get(OutingRequest, self.req.id).checked_out_at)

    def test_bad_location(self):
        for location in [{"x": 1}, ["Main Gate"], 7, "   ", "G" * 61]:
            resp = self.scan(self.req.qr_outgoing_id, location)
            self.assertEqual(resp.status_code, 400, location)
            self.assertEqual(resp.get_json()["error"], "validation_failed")
        self.assertIsNone(db.session.get(OutingRequest, self.req.id).checked_out_at)
        self.assertEqual(GateActivity.query.count(), 0)

    def test_non_ascii_signature(self):
        resp = self.scan({"qrId": self.req.qr_outgoing_id, "signature": "é"})
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.get_json()["error"], "unresolved_code")

    def test_validate_does_not_record(self):
        resp = self.client.post("/gate/qr/validate", json={"qrData": self.req.qr_outgoing_id})
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()["data"]
        self.assertTrue(data["valid"])
        self.assertEqual(data["type"], "outgoing")
        self.assertEqual(data["student"]["name"], "Riya Patil")
        self.assertIsNone(db.session.get(OutingRequest, self.req.id).checked_out_at)

        resp = self.client.post("/gate/qr/validate", json={"qrData": self.req.qr_incoming_id})
        data = resp.get_json()["data"]
        self.assertFalse(data["valid"])
        self.assertEqual(data["reason"], "out_of_sequence_scan")

        resp = self.client.post("/gate/qr/validate", json={"qrData": "IN_1_1"})
        self.assertEqual(resp.status_code, 404)

    def test_currently_out(self):
        self.assertEqual(self.client.get("/gate/currently-out").get_json()["count"], 0)

        self.scan(self.req.qr_outgoing_id)
        body = self.client.get("/gate/currently-out").get_json()
        self.assertEqual(body["count"], 1)
        self.assertEqual(body["students"][0]["student"]["roll_no"], "22CS041")

        self.scan(self.req.qr_incoming_id)
        self.assertEqual(self.client.get("/gate/currently-out").get_json()["students"], [])

    def test_students_cannot_list_who_is_out(self):
        self.login(self.student)
        self.assertEqual(self.client.get("/gate/currently-out").status_code, 403)
        self.assertEqual(self.client.post("/gate/qr/validate", json={"qrData": "x"}).status_code, 403)
