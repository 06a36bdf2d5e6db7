from __future__ import annotations

from datetime import datetime, timedelta

from lotemap import create_app
from lotemap.core.config import Config


def test_list_lotes(client):
    response = client.get("/api/lotes")
    assert response.status_code == 200
    data = response.get_json()
    assert [item["id"] for item in data["items"]] == ["A-07", "A-12", "B-02"]
    assert data["items"][0] == {
        "id": "A-07",
        "mz": "A",
        "lote": 7,
        "areaM2": 120.5,
        "price": 45000.0,
        "condicion": "LIBRE",
    }
    assert datetime.fromisoformat(data["updatedAt"].replace("Z", "+00:00"))


def test_update_lote_then_list_reflects_change(client):
    response = client.put(
        "/api/lotes/a-07",
        json={"estado": "SEPARADO", "cliente": "Juan Perez", "asesor": "Rosa"},
    )
    assert response.status_code == 200
    data = response.get_json()
    assert data["item"]["condicion"] == "SEPARADO"
    assert data["item"]["cliente"] == "Juan Perez"
    assert data["item"]["ultimaModificacion"]
    assert data["savedAt"]

    listed = {item["id"]: item for item in client.get("/api/lotes").get_json()["items"]}
    assert listed["A-07"]["condicion"] == "SEPARADO"
    assert listed["A-07"]["asesor"] == "Rosa"


def test_update_unknown_lote_is_404(client):
    response = client.put("/api/lotes/Z-99", json={"estado": "VENDIDO"})
    assert response.status_code == 404
    assert response.get_json() == {"error": "Lote no encontrado"}


def test_update_with_non_json_body_only_stamps_timestamp(client):
    response = client.put("/api/lotes/B-02", data="nope", content_type="text/plain")
    assert response.status_code == 200
    item = response.get_json()["item"]
    assert item["condicion"] == "VENDIDO"
    assert item["ultimaModificacion"] != "01-ene-26 09:00:00"


def test_method_mismatch_returns_405_with_allow_header(client):
    response = client.post("/api/lotes", json={})
    assert response.status_code == 405
    assert response.headers["Allow"] == "GET"

    response = client.get("/api/lotes/A-07")
    assert response.status_code == 405
    assert response.headers["Allow"] == "PUT"

    response = client.delete("/api/lotes/A-07")
    assert response.status_code == 405


def test_storage_failure_is_500(tmp_path):
    class BrokenConfig(Config):
        TESTING = True
        SQLALCHEMY_DATABASE_URI = "sqlite://"
        LOTES_BACKEND = "csv"
        LOTES_CSV_PATH = str(tmp_path / "missing.csv")

    app = create_app(BrokenConfig)
    client = app.test_client()

    response = client.get("/api/lotes")
    assert response.status_code == 500
    assert "error" in response.get_json()

    response = client.put("/api/lotes/A-07", json={"estado": "VENDIDO"})
    assert response.status_code == 500


def test_db_backend_serves_same_contract(db_client):
    response = db_client.put("/api/lotes/A-12", json={"estado": "vendido", "price": None})
    assert response.status_code == 200
    item = response.get_json()["item"]
    assert item["condicion"] == "VENDIDO"
    assert item["price"] is None

    items = db_client.get("/api/lotes").get_json()["items"]
    assert [item["id"] for item in items] == ["A-07", "A-12", "B-02"]


def test_export_csv_applies_filters(client):
    response = client.get("/api/lotes.csv?mz=a&status=libre")
    assert response.status_code == 200
    assert response.headers["Content-Type"].startswith("text/csv")
    lines = response.get_data(as_text=True).splitlines()
    assert lines == [
        '"MZ","LT","AREA_M2","ASESOR","PRECIO","CONDICION"',
        '"A","7","120.50","","45000.00","LIBRE"',
    ]


def test_quote_endpoint(client):
    response = client.post(
        "/api/cotizacion",
        json={
            "price": 45000,
            "downPayment": 5000,
            "installments": 24,
            "lastEdited": "descuentoPct",
            "descuentoPct": 10,
            "validityDays": 45,
        },
    )
    assert response.status_code == 200
    data = response.get_json()
    assert data["quote"]["downPayment"] == 6000
    assert data["quote"]["financed"] == 39000
    assert data["quote"]["monthly"] == 1625.0
    assert data["quickQuotes"] == {"12": 3250.0, "24": 1625.0, "36": 1083.33}
    assert data["discount"]["descuentoSoles"] == 4500.0
    assert data["discount"]["precioPromocional"] == 40500.0
    assert data["promoExpiresAt"]

    assert client.get("/api/cotizacion").headers["Allow"] == "POST"


def test_quote_endpoint_keeps_explicit_zero_values(client):
    response = client.post(
        "/api/cotizacion",
        json={"price": 45000, "downPayment": 6000, "installments": 0, "validityDays": 0},
    )
    data = response.get_json()
    assert data["quote"]["installments"] == 0
    assert data["quote"]["monthly"] == 0.0
    remaining = datetime.fromisoformat(data["promoExpiresAt"]) - datetime.now()
    assert timedelta(hours=23) < remaining <= timedelta(days=1)

    defaults = client.post("/api/cotizacion", json={"price": 45000}).get_json()
    assert defaults["quote"]["installments"] == 24
    remaining = datetime.fromisoformat(defaults["promoExpiresAt"]) - datetime.now()
    assert timedelta(days=6, hours=23) < remaining <= timedelta(days=7)


def test_health_and_unknown_route(client):
    assert client.get("/health").get_json() == {"status": "ok", "backend": "csv"}
    response = client.get("/nope")
    assert response.status_code == 404
    assert response.get_json()["error"]


def test_export_csv_applies_search(client):
    response = client.get("/api/lotes.csv?q=rojas")
    lines = response.get_data(as_text=True).splitlines()
    assert lines[1:] == ['"A","12","118.75","Rosa Quispe","44500.00","SEPARADO"']


def test_summary_counts_statuses(client):
    client.put("/api/lotes/A-07", json={"estado": "VENDIDO"})
    response = client.get("/api/lotes/resumen")
    assert response.status_code == 200
    assert response.get_json() == {
        "total": 3,
        "porEstado": {"LIBRE": 0, "SEPARADO": 1, "VENDIDO": 2},
    }
