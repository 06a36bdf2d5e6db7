from __future__ import annotations

import logging
from pathlib import Path

import click
from flask import Flask, jsonify, redirect, url_for

from lotemap.core.config import Config
from lotemap.core.extensions import db, migrate
from lotemap.lotes import lotes_bp
from lotemap.lotes.storage import StorageError, build_storage


def create_app(config_object: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)

    app.extensions["lotes_storage"] = build_storage(app.config)
    app.register_blueprint(lotes_bp)

    register_cli(app)
    register_routes(app)
    return app


def configure_logging(app: Flask) -> None:
    level = str(app.config.get("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("lotemap").setLevel(level)
    app.logger.setLevel(level)


def register_routes(app: Flask) -> None:
    @app.get("/")
    def home():
        return redirect(url_for("lotes.list_lotes"))

    @app.get("/health")
    def health():
        return jsonify({"status": "ok", "backend": app.config.get("LOTES_BACKEND")})

    @app.errorhandler(404)
    def not_found(_error):
        return jsonify({"error": "Recurso no encontrado"}), 404


def register_cli(app: Flask) -> None:
    @app.cli.command("seed-lotes")
    @click.option(
        "--csv",
        "csv_path",
        type=click.Path(dir_okay=False, path_type=Path),
        default=None,
        help="CSV source (defaults to LOTES_CSV_PATH).",
    )
    @click.option("--batch-size", type=int, default=None, help="Rows per upsert batch.")
    @click.option("--create-tables", is_flag=True, help="Create missing tables before seeding.")
    def seed_lotes(csv_path: Path | None, batch_size: int | None, create_tables: bool) -> None:
        """Upsert every lot of the CSV into the lotes table."""
        from lotemap.lotes.services import seed_lotes_from_csv

        if create_tables:
            db.create_all()
        source = csv_path or Path(app.config["LOTES_CSV_PATH"])
        try:
            total = seed_lotes_from_csv(
                source,
                batch_size=app.config["SEED_BATCH_SIZE"] if batch_size is None else batch_size,
                comma_mode=app.config["NUMBER_COMMA_MODE"],
            )
        except (StorageError, ValueError) as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(f"Seed completado: {total} lotes upsertados")
