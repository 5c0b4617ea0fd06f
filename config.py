import os
from dotenv import load_dotenv

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

load_dotenv()


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "change-this-secret")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "instance", "outings.db"),
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # HMAC key for QR payload signatures
    QR_SECRET = os.getenv("QR_SECRET", SECRET_KEY)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    SEED_DEMO_DATA = os.getenv("SEED_DEMO_DATA", "1") == "1"


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    QR_SECRET = "test-qr-secret"
    SEED_DEMO_DATA = False
