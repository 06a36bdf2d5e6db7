from __future__ import annotations

import os


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///lotes.db",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOTES_BACKEND = os.getenv("LOTES_BACKEND", "csv")
    LOTES_CSV_PATH = os.getenv("LOTES_CSV_PATH", "data/lotes.csv")
    NUMBER_COMMA_MODE = os.getenv("NUMBER_COMMA_MODE", "thousands")
    SEED_BATCH_SIZE = int(os.getenv("SEED_BATCH_SIZE", "200"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
