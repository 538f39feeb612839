"""Batch certificate generation for one event.

A run moves through ``idle → fetching → processing → persisting →
packaging → done``. Per-participant work (token, QR code, PDF) is pure, so
it may run on a thread pool; outcomes are always consumed back in input
order, which keeps progress monotonic and the archive order stable.
"""

from __future__ import annotations

import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Sequence

from flask import current_app

from ..shared.archive import build_archive
from ..shared.certificates import (
    CertificateContent,
    CertificateRenderError,
    render_certificate_pdf,
)
from ..shared.names import archive_filename, certificate_filename
from ..shared.qr import encode_verification_code
from ..shared.time import iso_timestamp, now_utc
from ..shared.tokens import generate_certificate_token
from .errors import (
    EmptyBatchError,
    EventNotFoundError,
    FetchError,
    NoCertificatesProducedError,
    PersistError,
    StoreError,
)
from .store import CertificateStore, EventRow, NewCertificate, ParticipantRow, RecipientRow


class BatchState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PROCESSING = "processing"
    PERSISTING = "persisting"
    PACKAGING = "packaging"
    DONE = "done"
    FAILED = "failed"


def progress_percent(index: int, total: int) -> int:
    """``round(index / total * 100)`` with halves rounded up."""
    if total <= 0:
        return 100
    return (200 * index + total) // (2 * total)


_CLOSED = object()


class ProgressChannel:
    """Progress stream for a batch run, consumed by iterating over it.

    Published values never go backwards. Iteration ends once the run closes
    the channel. ``cancel()`` asks the run to stop before its next item.
    """

    def __init__(self):
        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._last = 0
        self._closed = False
        self.history: list[int] = []

    def publish(self, percent: int) -> int:
        with self._lock:
            if self._closed:
                return self._last
            value = max(self._last, min(100, int(percent)))
            self._last = value
            self.history.append(value)
            self._queue.put(value)
            return value

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_CLOSED)

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last(self) -> int:
        return self._last

    def __iter__(self) -> Iterator[int]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item


@dataclass(frozen=True)
class GeneratedCertificate:
    participant_id: int
    participant_name: str
    participant_email: str
    token: str
    qr_code_data: str
    pdf_bytes: bytes
    warning: str | None = None

    @property
    def filename(self) -> str:
        return certificate_filename(self.participant_name)


@dataclass(frozen=True)
class ItemError:
    participant_id: int
    message: str
    retryable: bool = False


@dataclass(frozen=True)
class ItemOutcome:
    index: int
    participant_id: int
    result: GeneratedCertificate | None = None
    error: ItemError | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None


@dataclass(frozen=True)
class RenderSettings:
    base_url: str
    template_pdf: str | None = None
    footer_text: str = ""


def produce_certificate(
    participant: ParticipantRow, event: EventRow, settings: RenderSettings
) -> GeneratedCertificate:
    """Token → QR code → PDF for one participant."""

    token = generate_certificate_token(participant.id, event.id, iso_timestamp())
    code = encode_verification_code(token, settings.base_url)
    pdf_bytes = render_certificate_pdf(
        CertificateContent(
            participant_name=participant.name,
            event_title=event.title,
            event_date=event.event_date,
            token=token,
            qr_data_url=code.data_url,
            footer_text=settings.footer_text,
        ),
        template_pdf=settings.template_pdf,
    )
    return GeneratedCertificate(
        participant_id=participant.id,
        participant_name=participant.name,
        participant_email=participant.email,
        token=token,
        qr_code_data=code.data_url,
        pdf_bytes=pdf_bytes,
        warning=code.warning if code.degraded else None,
    )


def _run_item(
    index: int, participant: ParticipantRow, event: EventRow, settings: RenderSettings
) -> ItemOutcome:
    try:
        result = produce_certificate(participant, event, settings)
    except CertificateRenderError as exc:
        return ItemOutcome(
            index=index,
            participant_id=participant.id,
            error=ItemError(participant.id, str(exc)),
        )
    except Exception as exc:  # isolate per-item failures
        return ItemOutcome(
            index=index,
            participant_id=participant.id,
            error=ItemError(participant.id, f"unexpected error: {exc!r}"),
        )
    return ItemOutcome(index=index, participant_id=participant.id, result=result)


@dataclass
class BatchResult:
    event_id: int
    event_title: str
    total: int
    outcomes: dict[int, ItemOutcome]
    archive: bytes = b""
    cancelled: bool = False
    state: BatchState = BatchState.DONE
    progress: list[int] = field(default_factory=list)

    @property
    def generated(self) -> list[GeneratedCertificate]:
        return [
            self.outcomes[index].result
            for index in sorted(self.outcomes)
            if self.outcomes[index].ok
        ]

    @property
    def produced(self) -> int:
        return sum(1 for outcome in self.outcomes.values() if outcome.ok)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes.values() if not outcome.ok)

    @property
    def skipped(self) -> int:
        return self.total - self.produced

    @property
    def certificates(self) -> list[tuple[int, str]]:
        return [(cert.participant_id, cert.token) for cert in self.generated]

    @property
    def failures(self) -> dict[int, str]:
        return {
            index: outcome.error.message
            for index, outcome in sorted(self.outcomes.items())
            if outcome.error is not None
        }

    @property
    def warnings(self) -> list[str]:
        return [
            f"participant {cert.participant_id}: {cert.warning}"
            for cert in self.generated
            if cert.warning
        ]

    @property
    def archive_name(self) -> str:
        return archive_filename(self.event_title)

    @property
    def status(self) -> str:
        if self.cancelled:
            return "cancelled"
        if self.skipped:
            return "partial"
        return "success"

    def recipients(self) -> list[RecipientRow]:
        return [
            RecipientRow(
                participant_id=cert.participant_id,
                name=cert.participant_name,
                email=cert.participant_email,
                token=cert.token,
            )
            for cert in self.generated
        ]

    def summary(self) -> str:
        text = (
            f"{self.status}: produced={self.produced} skipped={self.skipped} "
            f"total={self.total}"
        )
        if self.cancelled:
            text += f" processed={len(self.outcomes)}"
        if self.warnings:
            text += f" warnings={len(self.warnings)}"
        return text


class CertificateBatch:
    """One batch run for one event; create a new instance per run."""

    def __init__(
        self,
        event_id: int,
        *,
        store: CertificateStore | None = None,
        channel: ProgressChannel | None = None,
        settings: RenderSettings | None = None,
        workers: int | None = None,
    ):
        config = current_app.config
        self.event_id = event_id
        self.store = store or CertificateStore()
        self.channel = channel or ProgressChannel()
        self.settings = settings or RenderSettings(
            base_url=config.get("VERIFY_BASE_URL", ""),
            template_pdf=config.get("CERT_TEMPLATE_PDF"),
            footer_text=config.get("CERT_FOOTER_TEXT", ""),
        )
        self.workers = max(1, workers or config.get("CERT_BATCH_WORKERS", 1) or 1)
        self.state = BatchState.IDLE

    def _transition(self, state: BatchState) -> None:
        self.state = state
        current_app.logger.info(
            "[CERT-BATCH] event=%s state=%s", self.event_id, state.value
        )

    def run(self) -> BatchResult:
        try:
            return self._run()
        except Exception:
            self._transition(BatchState.FAILED)
            raise
        finally:
            self.channel.close()

    def _run(self) -> BatchResult:
        event, participants = self._fetch()
        outcomes, cancelled = self._process(event, participants)
        result = BatchResult(
            event_id=event.id,
            event_title=event.title,
            total=len(participants),
            outcomes=outcomes,
            cancelled=cancelled,
        )
        if result.produced == 0:
            if cancelled:
                current_app.logger.info(
                    "[CERT-BATCH] event=%s cancelled before any certificate", event.id
                )
                result.progress = list(self.channel.history)
                self._transition(BatchState.DONE)
                return result
            raise NoCertificatesProducedError(
                "No certificates were produced; every participant failed.",
                failures=result.failures,
            )
        self._persist(event, result.generated)
        self._transition(BatchState.PACKAGING)
        result.archive = build_archive(
            [(cert.filename, cert.pdf_bytes) for cert in result.generated]
        )
        result.progress = list(self.channel.history)
        self._transition(BatchState.DONE)
        current_app.logger.info(
            "[CERT-BATCH] event=%s %s", event.id, result.summary()
        )
        return result

    def _fetch(self) -> tuple[EventRow, list[ParticipantRow]]:
        try:
            event = self.store.get_event(self.event_id)
            if event is None:
                raise EventNotFoundError(f"Event {self.event_id} not found.")
            if self.store.count_participants(self.event_id) == 0:
                raise EmptyBatchError(
                    "No participants found; upload participants before generating certificates."
                )
            self._transition(BatchState.FETCHING)
            participants = self.store.list_participants(self.event_id)
        except StoreError as exc:
            raise FetchError(f"Failed to fetch participants: {exc}") from exc
        if not participants:
            raise EmptyBatchError("Failed to fetch participants or no participants found.")
        return event, participants

    def _record(self, outcome: ItemOutcome, total: int) -> None:
        if outcome.error is not None:
            current_app.logger.warning(
                "[CERT-FAIL] event=%s participant=%s index=%s/%s error=%s",
                self.event_id,
                outcome.participant_id,
                outcome.index,
                total,
                outcome.error.message,
            )
        elif outcome.result.warning:
            current_app.logger.warning(
                "[CERT-QR-DEGRADED] event=%s participant=%s warning=%s",
                self.event_id,
                outcome.participant_id,
                outcome.result.warning,
            )
        self.channel.publish(progress_percent(outcome.index, total))

    def _process(
        self, event: EventRow, participants: Sequence[ParticipantRow]
    ) -> tuple[dict[int, ItemOutcome], bool]:
        self._transition(BatchState.PROCESSING)
        total = len(participants)
        outcomes: dict[int, ItemOutcome] = {}

        if self.workers == 1:
            for index, participant in enumerate(participants, start=1):
                if self.channel.cancelled:
                    return outcomes, True
                outcome = _run_item(index, participant, event, self.settings)
                outcomes[index] = outcome
                self._record(outcome, total)
            return outcomes, False

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = [
                pool.submit(_run_item, index, participant, event, self.settings)
                for index, participant in enumerate(participants, start=1)
            ]
            for position, future in enumerate(futures):
                if self.channel.cancelled:
                    for pending in futures[position:]:
                        pending.cancel()
                    # workers pick items in order, so whatever started forms
                    # a contiguous run right after the consumed ones
                    for started in futures[position:]:
                        if started.cancelled():
                            break
                        outcome = started.result()
                        outcomes[outcome.index] = outcome
                        self._record(outcome, total)
                    return outcomes, True
                outcome = future.result()
                outcomes[outcome.index] = outcome
                self._record(outcome, total)
        return outcomes, False

    def _persist(self, event: EventRow, generated: Sequence[GeneratedCertificate]) -> None:
        self._transition(BatchState.PERSISTING)
        generated_at = now_utc()
        records = [
            NewCertificate(
                participant_id=cert.participant_id,
                event_id=event.id,
                token=cert.token,
                qr_code_data=cert.qr_code_data,
                generated_at=generated_at,
            )
            for cert in generated
        ]
        try:
            self.store.replace_certificates(event.id, records)
        except StoreError as exc:
            raise PersistError(f"Failed to save certificates to database: {exc}") from exc


def generate_event_certificates(
    event_id: int,
    *,
    store: CertificateStore | None = None,
    channel: ProgressChannel | None = None,
    settings: RenderSettings | None = None,
    workers: int | None = None,
) -> BatchResult:
    """Run a full batch for ``event_id`` and return its result."""

    return CertificateBatch(
        event_id,
        store=store,
        channel=channel,
        settings=settings,
        workers=workers,
    ).run()
