import os
import json
import logging

import click
from flask import Flask

from payhooks.config import config_by_name
from payhooks.extensions import db, migrate


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from payhooks import models  # noqa: F401

    # --- CLI commands ---
    register_cli(app)

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    def _store():
        from payhooks.services.store import SqlAlchemyStore
        return SqlAlchemyStore(db.session)

    @app.cli.command("retry-webhooks")
    @click.option("--max-batch", type=int, default=None,
                  help="Max events per run (default WEBHOOK_RETRY_MAX_BATCH).")
    @click.option("--max-retry-count", type=int, default=None,
                  help="Retry ceiling (default WEBHOOK_RETRY_MAX_COUNT).")
    def retry_webhooks(max_batch, max_retry_count):
        """Reprocess pending and failed webhook events.

        Meant for a cron schedule. Exits non-zero if any event failed.

        Usage:
            flask retry-webhooks
            flask retry-webhooks --max-batch 50 --max-retry-count 3
        """
        from payhooks.services.retry_service import retry_webhook_events

        summary = retry_webhook_events(
            _store(),
            max_batch=max_batch or app.config["WEBHOOK_RETRY_MAX_BATCH"],
            max_retry_count=max_retry_count or app.config["WEBHOOK_RETRY_MAX_COUNT"],
        )

        click.echo(
            f"Processed {summary.processed} event(s): "
            f"{summary.succeeded} succeeded, {summary.failed} failed "
            f"({summary.duration_ms}ms)"
        )
        for item in summary.errors:
            click.echo(f"  {item['event_id']}: {item['error']}")
        if summary.failed:
            raise SystemExit(1)

    @app.cli.command("webhook-metrics")
    def webhook_metrics():
        """Print webhook processing metrics as JSON."""
        from payhooks.services.metrics_service import get_webhook_metrics

        click.echo(json.dumps(get_webhook_metrics(_store()), indent=2))

    @app.cli.command("reconciliation-backlog")
    def reconciliation_backlog():
        """List subscriptions created with placeholder plan/client/unit ids."""
        from payhooks.services.reconciliation_service import list_reconciliation_backlog

        backlog = list_reconciliation_backlog(_store())
        if not backlog:
            click.echo("No subscriptions need reconciliation.")
            return

        click.echo(f"{len(backlog)} subscription(s) need reconciliation:")
        for item in backlog:
            click.echo(
                f"  {item['external_ref']} (id: {item['id']}, {item['status']}) "
                f"placeholders: {', '.join(item['placeholders'])}"
            )

    @app.cli.command("ingest-webhook")
    @click.argument("path", type=click.Path(exists=True, dir_okay=False))
    @click.option("--reprocess", is_flag=True,
                  help="Re-run an already recorded event instead of inserting it.")
    def ingest_webhook(path, reprocess):
        """Ingest one webhook event from a JSON file.

        Usage:
            flask ingest-webhook event.json
            flask ingest-webhook event.json --reprocess
        """
        from payhooks.services.webhook_service import process_webhook

        with open(path, encoding="utf-8") as f:
            try:
                event = json.load(f)
            except ValueError as e:
                raise click.ClickException(f"Invalid JSON in {path}: {e}")

        result = process_webhook(event, _store(), reprocess_existing=reprocess)

        if result.already_processed:
            click.echo("already_processed")
        elif result.success:
            click.echo("processed")
        else:
            raise click.ClickException(f"{result.error_code}: {result.error}")
