from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from lotemap import create_app
from lotemap.core.config import Config
from lotemap.core.extensions import db
from lotemap.lotes.services import seed_lotes_from_csv

SAMPLE_CSV = (
    "MZ,LOTE,AREA,PRECIO,CONDICION,ASESOR,CLIENTE,COMENTARIO,ULTIMA_MODIFICACION,NOTAS\n"
    'B,2,150.00,"52,000.00",VENDIDO,Luis Vega,Ana Torres,,01-ene-26 09:00:00,esquina\n'
    "A,7,120.50,45000,libre,,,,,\n"
    "A,,99.00,1000,LIBRE,,,,,\n"
    'a,12,118.75,"S/ 44,500",separado,Rosa Quispe,Carlos Rojas,Separado con 1000,03-feb-26 10:15:00,\n'
)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    LOTES_BACKEND = "csv"
    NUMBER_COMMA_MODE = "thousands"


@pytest.fixture
def csv_path(tmp_path):
    path = tmp_path / "lotes.csv"
    path.write_text(SAMPLE_CSV, encoding="utf-8")
    return path


@pytest.fixture
def app(csv_path):
    class CsvConfig(TestConfig):
        LOTES_CSV_PATH = str(csv_path)

    app = create_app(CsvConfig)
    with app.app_context():
        yield app


@pytest.fixture
def db_app(csv_path):
    class DbConfig(TestConfig):
        LOTES_BACKEND = "db"
        LOTES_CSV_PATH = str(csv_path)

    app = create_app(DbConfig)
    with app.app_context():
        db.create_all()
        seed_lotes_from_csv(csv_path)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db_client(db_app):
    return db_app.test_client()
