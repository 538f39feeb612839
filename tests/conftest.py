import pathlib
import sys
from datetime import date

import pytest
import zxingcpp
from PIL import ImageOps

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from certflow.app import create_app, db
from certflow.models import Event, Participant


def read_qr_text(image):
    """Decode the single QR code in a PIL image."""
    padded = ImageOps.expand(image.convert("L"), border=40, fill=255)
    results = zxingcpp.read_barcodes(padded)
    assert len(results) == 1
    return results[0].text


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "slow" in item.keywords or "quarantine" in item.keywords:
            continue
        item.add_marker("full")
        if "no_smoke" in item.keywords:
            continue
        item.add_marker("smoke")


TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "VERIFY_BASE_URL": "https://certs.example.org",
    "EMAIL_SERVICE_ID": "",
    "EMAIL_TEMPLATE_ID": "",
    "EMAIL_PUBLIC_KEY": "",
    "CERT_TEMPLATE_PDF": None,
    "CERT_FOOTER_TEXT": "",
    "CERT_BATCH_WORKERS": 1,
}


@pytest.fixture
def app():
    application = create_app(dict(TEST_CONFIG))
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_event(app):
    def _make(title="Intro to Data", names=("Jane Doe",), event_date=date(2025, 10, 3)):
        event = Event(title=title, event_date=event_date, status="active")
        db.session.add(event)
        db.session.flush()
        for index, name in enumerate(names, start=1):
            db.session.add(
                Participant(
                    event_id=event.id,
                    name=name,
                    email=f"p{index}@example.org",
                )
            )
        db.session.commit()
        return event.id

    return _make
