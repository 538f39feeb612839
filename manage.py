from certflow.app import create_app, db
import threading

from flask_migrate import Migrate
from flask.cli import FlaskGroup
import click
from flask import current_app
from certflow.services.batch import ProgressChannel, generate_event_certificates
from certflow.services.distribution import DistributionConfig, build_distributor
from certflow.services.errors import BatchError
from certflow.services.store import CertificateStore
from certflow.services.verification import verify_certificate
from certflow.shared.storage import resolve_output_path, write_atomic


migrate = Migrate()


def create_certflow_app():
    app = create_app()
    migrate.init_app(app, db)
    return app


cli = FlaskGroup(create_app=create_certflow_app)


def _echo_progress(channel: ProgressChannel, label: str) -> threading.Thread:
    def run():
        for percent in channel:
            click.echo(f"{label}: {percent}%")

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread


@cli.command("generate_certs")
@click.option("--event", "event_id", required=True, type=int)
@click.option("--out", "out_path", required=True, type=click.Path(), help="ZIP file, or a directory to write it into")
@click.option("--workers", type=int, default=None, help="Render with a thread pool")
def generate_certs(event_id: int, out_path: str, workers: int | None):
    """Generate certificates for an event and write the ZIP archive."""
    channel = ProgressChannel()
    printer = _echo_progress(channel, "Generating")
    try:
        result = generate_event_certificates(event_id, channel=channel, workers=workers)
    except BatchError as exc:
        printer.join()
        click.echo(f"failed ({exc.phase}): {exc}", err=True)
        raise SystemExit(1)
    printer.join()
    for index, message in result.failures.items():
        click.echo(f"skipped #{index}: {message}", err=True)
    for warning in result.warnings:
        click.echo(f"warning: {warning}", err=True)
    if result.archive:
        written = write_atomic(resolve_output_path(out_path, result.archive_name), result.archive)
        click.echo(f"wrote {written}")
    click.echo(result.summary())


@cli.command("send_certs")
@click.option("--event", "event_id", required=True, type=int)
@click.option("--bulk", is_flag=True, help="One draft with every recipient in BCC (fallback mode)")
def send_certs(event_id: int, bulk: bool):
    """Email certificate access details to an event's participants."""
    store = CertificateStore()
    event = store.get_event(event_id)
    if not event:
        click.echo("Not found", err=True)
        raise SystemExit(1)
    recipients = store.list_recipients(event_id)
    if not recipients:
        click.echo("No certificates generated yet", err=True)
        raise SystemExit(1)

    config = DistributionConfig.from_mapping(current_app.config)
    distributor = build_distributor(config, bulk=bulk)
    if distributor.mode == "fallback":
        click.echo("Email service not configured; opening drafts in your mail client.")
    channel = ProgressChannel()
    printer = _echo_progress(channel, "Sending")
    try:
        report = distributor.distribute(recipients, event.title, channel=channel)
    finally:
        channel.close()
        printer.join()
    for failure in report.failures:
        click.echo(
            f"failed {failure.get('email', '')}: {failure.get('reason')} {failure.get('detail') or ''}".rstrip(),
            err=True,
        )
    click.echo(report.summary())


@cli.command("verify_cert")
@click.option("--token", required=True)
def verify_cert(token: str):
    """Verify a certificate token and record the verification."""
    result = verify_certificate(token)
    if not result.valid:
        click.echo("Invalid certificate", err=True)
        raise SystemExit(1)
    click.echo(
        f"{result.participant_name} <{result.participant_email}> | "
        f"{result.event_title} ({result.event_date}) | verified={result.verified_count}"
    )


if __name__ == "__main__":
    cli()
