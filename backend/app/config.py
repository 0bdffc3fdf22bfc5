# backend/app/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file in the instance folder unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///skilltree.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Retry executor defaults (see services/concurrency.py)
    RETRY_MAX_RETRIES = int(os.environ.get("RETRY_MAX_RETRIES", "3"))
    RETRY_BASE_DELAY = float(os.environ.get("RETRY_BASE_DELAY", "0.1"))

    # Browser origins allowed to call the API
    CORS_ORIGINS = tuple(
        origin.strip()
        for origin in os.environ.get(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    )
