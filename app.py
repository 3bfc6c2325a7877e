# app.py
import json
import logging

import click
from flask import Flask, current_app, jsonify
from flask_migrate import Migrate
from pymongo.errors import PyMongoError

from aggregation import run_aggregation
from averages_store import connect_averages_store
from config import Config
from errors import StoreConnectionError
from models import db


def configure_logging():
    # no-op when the root logger already has handlers
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # ---- DB setup
    db.init_app(app)
    Migrate(app, db)

    # ---- Helpers
    def open_store():
        try:
            return connect_averages_store(current_app.config)
        except StoreConnectionError as exc:
            current_app.logger.error("Averages store unavailable: %s", exc.message)
            return None

    # ---- CLI: operator trigger for the aggregation job
    @app.cli.command("recalculate-averages")
    def recalculate_averages():
        """Recompute every classroom average and store it."""
        configure_logging()
        report = run_aggregation(current_app.config, session=db.session)
        click.echo(json.dumps(report.to_dict(), indent=2, default=str))
        if not report.ok:
            raise SystemExit(1)

    # ---- API: precomputed averages for the dashboards
    @app.route("/api/class-averages")
    def api_class_averages():
        store = open_store()
        if store is None:
            return jsonify({"error": "Failed to fetch class averages."}), 500
        with store:
            try:
                averages = store.fetch_averages()
            except PyMongoError:
                current_app.logger.exception("Reading class averages failed")
                return jsonify({"error": "Failed to fetch class averages."}), 500
        return jsonify(averages)

    @app.route("/api/class-averages/<classroom_id>")
    def api_class_average(classroom_id):
        store = open_store()
        if store is None:
            return jsonify({"error": "Failed to fetch class average."}), 500
        with store:
            try:
                summary = store.get_average(classroom_id)
            except PyMongoError:
                current_app.logger.exception("Reading class average failed")
                return jsonify({"error": "Failed to fetch class average."}), 500
        if summary is None:
            # no row means "not yet calculated", never an average of 0
            return jsonify({"error": "Average not yet calculated", "classroom_id": classroom_id}), 404
        return jsonify(summary)

    @app.errorhandler(404)
    def not_found(_err):
        return jsonify({"error": "Not found"}), 404

    # ---- Critical: return the Flask app object
    return app


if __name__ == "__main__":
    configure_logging()
    app = create_app()
    app.run(debug=True)
