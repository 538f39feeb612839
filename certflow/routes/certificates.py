import csv
import io

from flask import Blueprint, Response, abort, current_app, jsonify, request, send_file

from ..services.batch import generate_event_certificates
from ..services.distribution import DistributionConfig, build_distributor
from ..services.errors import (
    BatchError,
    EmptyBatchError,
    EventNotFoundError,
    NoCertificatesProducedError,
)
from ..services.store import CertificateStore
from ..shared.names import sanitize_name
from ..shared.qr import build_verification_url
from ..shared.time import iso_timestamp

bp = Blueprint("certificates", __name__, url_prefix="/events")


def _error(exc: BatchError, status: int):
    payload = {"error": str(exc), "phase": exc.phase}
    if isinstance(exc, NoCertificatesProducedError):
        payload["failures"] = {str(k): v for k, v in exc.failures.items()}
    return jsonify(payload), status


@bp.post("/<int:event_id>/certificates")
def generate(event_id: int):
    workers = request.args.get("workers", type=int)
    try:
        result = generate_event_certificates(event_id, workers=workers)
    except EventNotFoundError as exc:
        return _error(exc, 404)
    except (EmptyBatchError, NoCertificatesProducedError) as exc:
        return _error(exc, 400)
    except BatchError as exc:
        current_app.logger.error("[CERT-BATCH] event=%s failed phase=%s error=%s", event_id, exc.phase, exc)
        return _error(exc, 500)

    resp = send_file(
        io.BytesIO(result.archive),
        mimetype="application/zip",
        as_attachment=True,
        download_name=result.archive_name,
    )
    resp.headers["X-Certificates-Produced"] = str(result.produced)
    resp.headers["X-Certificates-Skipped"] = str(result.skipped)
    resp.headers["X-Certificates-Status"] = result.status
    resp.headers["X-Certificates-Summary"] = result.summary()
    return resp


def _certificate_rows(event_id: int) -> list[dict]:
    base_url = current_app.config.get("VERIFY_BASE_URL", "")
    rows = []
    for record, participant in CertificateStore().list_certificates(event_id):
        rows.append(
            {
                "participant_id": participant.id,
                "name": participant.name,
                "email": participant.email,
                "certificate_id": record.short_id,
                "verification_url": build_verification_url(base_url, record.certificate_hash),
                "status": record.status,
                "verified_count": record.verified_count,
                "generated_at": iso_timestamp(record.generated_at) if record.generated_at else "",
                "last_verified_at": iso_timestamp(record.last_verified_at) if record.last_verified_at else "",
            }
        )
    return rows


def _require_boolean(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off", ""}:
            return False
    raise ValueError("Boolean value required")


def _require_event(event_id: int):
    event = CertificateStore().get_event(event_id)
    if not event:
        abort(404)
    return event


@bp.get("/<int:event_id>/certificates")
def list_certificates(event_id: int):
    _require_event(event_id)
    return jsonify({"event_id": event_id, "certificates": _certificate_rows(event_id)})


@bp.get("/<int:event_id>/certificates/export.csv")
def export_csv(event_id: int):
    event = _require_event(event_id)
    fieldnames = [
        "participant_id",
        "name",
        "email",
        "certificate_id",
        "verification_url",
        "status",
        "verified_count",
        "generated_at",
        "last_verified_at",
    ]
    sio = io.StringIO()
    writer = csv.DictWriter(sio, fieldnames=fieldnames)
    writer.writeheader()
    for row in _certificate_rows(event_id):
        writer.writerow(row)
    filename = f"{sanitize_name(event.title) or 'event'}_certificates.csv"
    return Response(
        sio.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@bp.post("/<int:event_id>/certificates/send")
def send(event_id: int):
    event = _require_event(event_id)
    recipients = CertificateStore().list_recipients(event_id)
    if not recipients:
        return jsonify({"error": "No certificates generated yet; generate certificates first."}), 400

    payload = request.get_json(silent=True) or {}
    raw_bulk = payload.get("bulk", request.args.get("bulk"))
    try:
        bulk = _require_boolean(raw_bulk) if raw_bulk is not None else False
    except ValueError as exc:
        return jsonify({"error": f"bulk: {exc}"}), 400
    config = DistributionConfig.from_mapping(current_app.config)
    # drafts go back to the browser; the server never opens a mail client
    distributor = build_distributor(config, handler=None, bulk=bulk)
    report = distributor.distribute(recipients, event.title)
    current_app.logger.info(
        "[CERT-SEND] event=%s %s", event_id, report.summary()
    )
    return jsonify(report.as_dict())
