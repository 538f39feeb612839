import io
import threading
import zipfile

import pytest
from sqlalchemy.exc import OperationalError

from certflow.app import db
from certflow.models import CertificateRecord, Participant
from certflow.services import batch as batch_module
from certflow.services.batch import (
    BatchState,
    CertificateBatch,
    ProgressChannel,
    generate_event_certificates,
    progress_percent,
)
from certflow.services.errors import (
    EmptyBatchError,
    EventNotFoundError,
    NoCertificatesProducedError,
    PersistError,
)
from certflow.services.store import CertificateStore
from certflow.shared import qr


def _entries(result):
    with zipfile.ZipFile(io.BytesIO(result.archive)) as archive:
        return archive.namelist()


def _tokens(event_id):
    return {
        r.certificate_hash
        for r in CertificateRecord.query.filter_by(event_id=event_id).all()
    }


def test_single_participant_end_to_end(make_event):
    event_id = make_event(names=("Jane Doe",))
    channel = ProgressChannel()

    result = generate_event_certificates(event_id, channel=channel)

    assert result.status == "success"
    assert (result.produced, result.skipped, result.total) == (1, 0, 1)
    assert _entries(result) == ["Jane_Doe_Certificate.pdf"]
    assert result.archive_name == "Intro_to_Data_Certificates.zip"
    assert list(channel) == [100]
    assert channel.closed

    record = CertificateRecord.query.filter_by(event_id=event_id).one()
    assert len(record.certificate_hash) == 32
    assert record.certificate_hash == result.certificates[0][1]
    assert record.status == "generated"
    assert record.verified_count == 0
    assert record.qr_code_data.startswith("data:image/png;base64,")


def test_record_and_entry_counts_match_produced(make_event):
    event_id = make_event(names=("Ann", "Bob", "Cy", "Di"))

    result = generate_event_certificates(event_id)

    assert result.produced == 4
    assert len(_entries(result)) == 4
    assert len(_tokens(event_id)) == 4
    assert result.progress == [25, 50, 75, 100]


def test_empty_name_is_skipped_and_reported(make_event, caplog):
    event_id = make_event(names=("Jane Doe", "", "Bob Ray"))
    caplog.set_level("WARNING")

    result = generate_event_certificates(event_id)

    assert result.status == "partial"
    assert (result.produced, result.skipped) == (2, 1)
    assert result.failures == {2: "participant name is empty"}
    assert _entries(result) == ["Jane_Doe_Certificate.pdf", "Bob_Ray_Certificate.pdf"]
    assert len(_tokens(event_id)) == 2
    assert "produced=2 skipped=1" in result.summary()
    assert any("[CERT-FAIL]" in message for message in caplog.messages)


def test_regeneration_replaces_previous_records(make_event):
    event_id = make_event(names=("Ann", "Bob"))
    first = generate_event_certificates(event_id)
    old_tokens = _tokens(event_id)
    assert len(old_tokens) == 2

    db.session.add(Participant(event_id=event_id, name="Cy", email="cy@example.org"))
    db.session.commit()
    second = generate_event_certificates(event_id)

    new_tokens = _tokens(event_id)
    assert second.produced == 3
    assert len(new_tokens) == 3
    assert not (old_tokens & new_tokens)
    assert {token for _, token in first.certificates} == old_tokens


def test_event_without_participants_fails_fast(make_event):
    event_id = make_event(names=())
    with pytest.raises(EmptyBatchError):
        generate_event_certificates(event_id)
    assert _tokens(event_id) == set()


def test_unknown_event(app):
    with pytest.raises(EventNotFoundError):
        generate_event_certificates(9999)


def test_all_items_failing_persists_nothing(make_event):
    event_id = make_event(names=("Ann",))
    generate_event_certificates(event_id)
    kept = _tokens(event_id)

    Participant.query.filter_by(event_id=event_id).update({"name": ""})
    db.session.commit()
    with pytest.raises(NoCertificatesProducedError) as excinfo:
        generate_event_certificates(event_id)

    assert excinfo.value.failures == {1: "participant name is empty"}
    assert _tokens(event_id) == kept


def test_insert_failure_keeps_previous_records(make_event, monkeypatch):
    event_id = make_event(names=("Ann", "Bob"))
    generate_event_certificates(event_id)
    kept = _tokens(event_id)

    def failing_insert(self, records):
        raise OperationalError("INSERT", {}, Exception("disk full"))

    monkeypatch.setattr(CertificateStore, "insert_certificates", failing_insert)
    batch = CertificateBatch(event_id)
    with pytest.raises(PersistError):
        batch.run()

    assert batch.state == BatchState.FAILED
    assert _tokens(event_id) == kept


def test_degraded_code_is_a_warning(make_event, monkeypatch):
    event_id = make_event(names=("Ann",))

    def broken(data):
        raise ValueError("encoder offline")

    monkeypatch.setattr(qr, "qr_png_bytes", broken)
    result = generate_event_certificates(event_id)

    assert result.produced == 1
    assert result.status == "success"
    assert len(result.warnings) == 1
    assert "encoder offline" in result.warnings[0]


def test_cancel_before_start_leaves_store_untouched(make_event):
    event_id = make_event(names=("Ann", "Bob"))
    generate_event_certificates(event_id)
    kept = _tokens(event_id)

    channel = ProgressChannel()
    channel.cancel()
    result = generate_event_certificates(event_id, channel=channel)

    assert result.cancelled
    assert result.status == "cancelled"
    assert result.produced == 0
    assert result.archive == b""
    assert _tokens(event_id) == kept


def test_cancel_mid_run_keeps_what_was_produced(make_event, monkeypatch):
    event_id = make_event(names=("Ann", "Bob", "Cy"))
    channel = ProgressChannel()
    original = batch_module.produce_certificate

    def produce_then_cancel(participant, event, settings):
        generated = original(participant, event, settings)
        channel.cancel()
        return generated

    monkeypatch.setattr(batch_module, "produce_certificate", produce_then_cancel)
    result = generate_event_certificates(event_id, channel=channel)

    assert result.cancelled
    assert result.produced == 1
    assert _entries(result) == ["Ann_Certificate.pdf"]
    assert len(_tokens(event_id)) == 1
    assert "processed=1" in result.summary()


def test_worker_pool_preserves_input_order(make_event):
    names = ("Ann", "Bob", "Cy", "Di", "Eve", "Fay")
    event_id = make_event(names=names)

    result = generate_event_certificates(event_id, workers=4)

    assert _entries(result) == [f"{name}_Certificate.pdf" for name in names]
    assert result.progress == sorted(result.progress)
    assert result.progress[-1] == 100
    assert [pid for pid, _ in result.certificates] == sorted(pid for pid, _ in result.certificates)


@pytest.mark.parametrize(
    "index, total, expected",
    [(1, 3, 33), (2, 3, 67), (3, 3, 100), (1, 8, 13), (1, 200, 1), (0, 0, 100)],
)
def test_progress_percent(index, total, expected):
    assert progress_percent(index, total) == expected


def test_channel_never_goes_backwards():
    channel = ProgressChannel()
    channel.publish(40)
    channel.publish(20)
    channel.publish(150)
    channel.close()
    channel.publish(10)
    assert list(channel) == [40, 40, 100]


def test_cancel_with_workers_keeps_finished_documents(make_event, monkeypatch):
    names = ("Ann", "Bob", "Cy", "Di", "Eve", "Fay")
    event_id = make_event(names=names)
    channel = ProgressChannel()
    bob_done = threading.Event()
    original = batch_module.produce_certificate

    def produce(participant, event, settings):
        generated = original(participant, event, settings)
        if participant.name == "Bob":
            bob_done.set()
        if participant.name == "Ann":
            # Bob finishes on the other worker before the run is cancelled
            assert bob_done.wait(timeout=10)
            channel.cancel()
        return generated

    monkeypatch.setattr(batch_module, "produce_certificate", produce)
    result = generate_event_certificates(event_id, channel=channel, workers=2)

    entries = _entries(result)
    assert result.cancelled
    assert entries[:2] == ["Ann_Certificate.pdf", "Bob_Certificate.pdf"]
    assert entries == [f"{name}_Certificate.pdf" for name in names[: len(entries)]]
    assert len(_tokens(event_id)) == result.produced
    assert result.progress == sorted(result.progress)
