from datetime import date
from io import BytesIO

import pytest
from PyPDF2 import PdfReader
from reportlab.lib.pagesizes import A4, landscape
from reportlab.pdfgen import canvas

from certflow.shared.certificates import (
    CertificateContent,
    CertificateRenderError,
    render_certificate_pdf,
)
from certflow.shared.qr import encode_verification_code

TOKEN = "AbCdEfGh12345678AbCdEfGh12345678"


def _content(**overrides):
    values = dict(
        participant_name="Jane Doe",
        event_title="Intro to Data",
        event_date=date(2025, 10, 3),
        token=TOKEN,
        qr_data_url=encode_verification_code(TOKEN, "https://certs.example.org").data_url,
    )
    values.update(overrides)
    return CertificateContent(**values)


def _text(pdf_bytes):
    reader = PdfReader(BytesIO(pdf_bytes))
    return reader, reader.pages[0].extract_text()


def test_renders_single_landscape_page_with_content():
    pdf = render_certificate_pdf(_content())
    reader, text = _text(pdf)

    assert pdf.startswith(b"%PDF")
    assert len(reader.pages) == 1
    box = reader.pages[0].mediabox
    assert float(box.width) > float(box.height)
    assert "CERTIFICATE OF ACHIEVEMENT" in text
    assert "Jane Doe" in text
    assert "Intro to Data" in text
    assert "October 3, 2025" in text
    assert "Certificate ID: ABCDEFGH" in text
    assert "Scan to verify" in text


def test_rendering_is_deterministic():
    assert render_certificate_pdf(_content()) == render_certificate_pdf(_content())


def test_accepts_iso_date_strings():
    _, text = _text(render_certificate_pdf(_content(event_date="2025-01-15")))
    assert "January 15, 2025" in text


def test_footer_text_is_drawn():
    _, text = _text(render_certificate_pdf(_content(footer_text="Data Guild")))
    assert "Data Guild" in text


def test_long_names_still_render():
    pdf = render_certificate_pdf(_content(participant_name="Maximiliana " * 12))
    assert pdf.startswith(b"%PDF")


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"participant_name": "   "}, "participant name is empty"),
        ({"event_title": ""}, "event title is empty"),
        ({"event_date": "not a date"}, "Unparseable event date"),
        ({"qr_data_url": "data:image/png;base64,AAAA"}, "malformed QR image"),
        ({"qr_data_url": "https://example.org/qr.png"}, "malformed QR image"),
    ],
)
def test_invalid_content_raises_render_error(overrides, message):
    with pytest.raises(CertificateRenderError) as excinfo:
        render_certificate_pdf(_content(**overrides))
    assert message in str(excinfo.value)


def test_merges_onto_background_template(tmp_path):
    template = tmp_path / "background.pdf"
    c = canvas.Canvas(str(template), pagesize=landscape(A4))
    c.drawString(40, 40, "Background Mark")
    c.showPage()
    c.save()

    reader, text = _text(render_certificate_pdf(_content(), template_pdf=str(template)))

    assert len(reader.pages) == 1
    assert "Background Mark" in text
    assert "Jane Doe" in text


def test_missing_template_raises_render_error(tmp_path):
    with pytest.raises(CertificateRenderError):
        render_certificate_pdf(_content(), template_pdf=str(tmp_path / "missing.pdf"))
