import zipfile

import pytest

from certflow.app import db
from certflow.models import CertificateRecord
from manage import generate_certs, send_certs, verify_cert


@pytest.fixture
def runner(app):
    for command in (generate_certs, send_certs, verify_cert):
        app.cli.add_command(command)
    return app.test_cli_runner()


def test_generate_certs_writes_archive(runner, make_event, tmp_path):
    event_id = make_event(names=("Jane Doe", "Bob Ray"))
    out = tmp_path / "out" / "certs.zip"

    res = runner.invoke(args=["generate_certs", "--event", str(event_id), "--out", str(out)])

    assert res.exit_code == 0, res.output
    assert "Generating: 100%" in res.output
    assert "success: produced=2 skipped=0 total=2" in res.output
    with zipfile.ZipFile(out) as archive:
        assert archive.namelist() == ["Jane_Doe_Certificate.pdf", "Bob_Ray_Certificate.pdf"]


def test_generate_certs_reports_fatal_errors(runner, make_event, tmp_path):
    event_id = make_event(names=())
    res = runner.invoke(
        args=["generate_certs", "--event", str(event_id), "--out", str(tmp_path / "x.zip")]
    )
    assert res.exit_code == 1
    assert not (tmp_path / "x.zip").exists()


def test_verify_cert(runner, make_event, tmp_path):
    event_id = make_event(names=("Jane Doe",))
    runner.invoke(args=["generate_certs", "--event", str(event_id), "--out", str(tmp_path / "c.zip")])
    token = db.session.query(CertificateRecord.certificate_hash).scalar()

    res = runner.invoke(args=["verify_cert", "--token", token])

    assert res.exit_code == 0
    assert "Jane Doe" in res.output
    assert "verified=1" in res.output
    assert runner.invoke(args=["verify_cert", "--token", "missing"]).exit_code == 1


def test_send_certs_fallback_opens_drafts(runner, make_event, tmp_path, monkeypatch):
    opened = []
    monkeypatch.setattr("webbrowser.open", lambda uri: opened.append(uri) or True)
    event_id = make_event(names=("Jane Doe", "Bob Ray"))
    runner.invoke(args=["generate_certs", "--event", str(event_id), "--out", str(tmp_path / "c.zip")])

    res = runner.invoke(args=["send_certs", "--event", str(event_id), "--bulk"])

    assert res.exit_code == 0, res.output
    assert "Email service not configured" in res.output
    assert len(opened) == 1
    assert "fallback: drafts=1 handed_off=1 failed=0" in res.output


def test_generate_certs_into_directory(runner, make_event, tmp_path):
    event_id = make_event(names=("Jane Doe",))

    res = runner.invoke(args=["generate_certs", "--event", str(event_id), "--out", str(tmp_path)])

    assert res.exit_code == 0, res.output
    assert (tmp_path / "Intro_to_Data_Certificates.zip").exists()
    assert not list(tmp_path.glob("*.part"))
