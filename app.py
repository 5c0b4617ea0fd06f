import logging
import os
from datetime import datetime, timezone

from flask import Flask, jsonify

from config import Config
from errors import OutingError
from models import db, User
from routes import session_bp, outings_bp, gate_bp

logger = logging.getLogger(__name__)

# ----------------- Demo seed -----------------


def seed_data():
    # Students of block A, first floor
    s1 = User(
        name="Pooja Kale",
        email="pooja.kale@hostel.test",
        role="student",
        roll_no="21CS010",
        phone="9800000010",
        parent_phone="9811111110",
        branch="CSE",
        room_number="A-104",
        hostel_block="A",
        floor="1st Floor",
    )
    s2 = User(
        name="Amit Shinde",
        email="amit.shinde@hostel.test",
        role="student",
        roll_no="21EC005",
        phone="9800000005",
        parent_phone="9811111105",
        branch="ECE",
        room_number="A-112",
        hostel_block="A",
        floor="1st Floor",
    )
    fi = User(name="Prof. S. P. Jadhav", email="floor.a1@hostel.test",
              role="floor-incharge", hostel_block="A", floor="1st Floor")
    hi = User(name="Prof. A. B. Marathe", email="hostel.a@hostel.test",
              role="hostel-incharge", hostel_block="A")
    warden = User(name="Dr. P. R. Sonawane", email="warden@hostel.test", role="warden")
    gate = User(name="Main Gate", email="maingate@hostel.test", role="gate")

    db.session.add_all([s1, s2, fi, hi, warden, gate])
    db.session.commit()
    logger.info("Seeded demo users")


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=app.config.get("LOG_LEVEL", "INFO"),
    )
    os.makedirs(app.instance_path, exist_ok=True)

    db.init_app(app)

    app.register_blueprint(session_bp)
    app.register_blueprint(outings_bp)
    app.register_blueprint(gate_bp)

    @app.errorhandler(OutingError)
    def handle_outing_error(error):
        db.session.rollback()
        return jsonify(error.to_dict()), error.status_code

    @app.route("/health")
    def health():
        return jsonify({
            "status": "healthy",
            "service": "outing-service",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    # Create tables (and demo users) once when the app starts
    with app.app_context():
        db.create_all()
        if app.config.get("SEED_DEMO_DATA") and not User.query.first():
            seed_data()

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True)
