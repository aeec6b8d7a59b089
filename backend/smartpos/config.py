# backend/smartpos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/smartpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///smartpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Payment provider checksum key (HMAC-SHA256 over webhook data)
    PAYMENT_CHECKSUM_KEY = os.environ.get("PAYMENT_CHECKSUM_KEY", "dev-checksum-key-change-me")

    # Receiving account printed into the QR payload
    PAYMENT_ACCOUNT_NUMBER = os.environ.get("PAYMENT_ACCOUNT_NUMBER", "")
    PAYMENT_ACCOUNT_NAME = os.environ.get("PAYMENT_ACCOUNT_NAME", "")
    PAYMENT_BANK_BIN = os.environ.get("PAYMENT_BANK_BIN", "")

    # QR lifetime and client polling cadence
    QR_EXPIRY_MINUTES = int(os.environ.get("QR_EXPIRY_MINUTES", "15"))
    PAYMENT_POLL_INTERVAL_SECONDS = float(os.environ.get("PAYMENT_POLL_INTERVAL_SECONDS", "3"))

    # Expired QR orders older than this are released by `flask orders release-stale`
    STALE_QR_GRACE_MINUTES = int(os.environ.get("STALE_QR_GRACE_MINUTES", "30"))
