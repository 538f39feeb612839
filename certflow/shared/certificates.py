from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from io import BytesIO

from PIL import Image, UnidentifiedImageError
from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.errors import PdfReadError
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from .qr import decode_data_url
from .time import fmt_long_date
from .tokens import short_certificate_id

logger = logging.getLogger("certflow.certs")

PAGE_SIZE = landscape(A4)
PAGE_HEIGHT_MM = 210

ACCENT = colors.Color(34 / 255, 197 / 255, 94 / 255)
BODY_TEXT = colors.Color(71 / 255, 85 / 255, 105 / 255)
MUTED_TEXT = colors.Color(107 / 255, 114 / 255, 128 / 255)

TITLE_TEXT = "CERTIFICATE OF ACHIEVEMENT"
QR_SIZE_MM = 25
QR_X_MM = 25
QR_TOP_MM = 160


class CertificateRenderError(RuntimeError):
    """Raised when a certificate document cannot be composed."""


@dataclass(frozen=True)
class CertificateContent:
    participant_name: str
    event_title: str
    event_date: date | str
    token: str
    qr_data_url: str
    footer_text: str = ""

    @property
    def certificate_id(self) -> str:
        return short_certificate_id(self.token)


def _mm(v: float) -> float:
    return v * 72.0 / 25.4


def _y(top_mm: float) -> float:
    # layout is measured from the top edge; reportlab's origin is bottom-left
    return _mm(PAGE_HEIGHT_MM - top_mm)


def fit_text(text: str, font_name: str, max_pt: int, min_pt: int, max_width: float) -> int:
    pt = max_pt
    while pt > min_pt and stringWidth(text, font_name, pt) > max_width:
        pt -= 1
    return pt


def _load_qr_image(data_url: str) -> ImageReader:
    try:
        raw = decode_data_url(data_url)
        with Image.open(BytesIO(raw)) as candidate:
            candidate.verify()
        image = Image.open(BytesIO(raw)).convert("RGB")
    except (ValueError, UnidentifiedImageError, OSError) as exc:
        raise CertificateRenderError(f"malformed QR image payload: {exc}") from exc
    return ImageReader(image)


def _validate(content: CertificateContent) -> tuple[str, str, str]:
    name = (content.participant_name or "").strip()
    if not name:
        raise CertificateRenderError("participant name is empty")
    title = (content.event_title or "").strip()
    if not title:
        raise CertificateRenderError("event title is empty")
    try:
        formatted_date = fmt_long_date(content.event_date)
    except ValueError as exc:
        raise CertificateRenderError(str(exc)) from exc
    return name, title, formatted_date


def _draw_certificate(c: canvas.Canvas, content: CertificateContent) -> None:
    name, title, formatted_date = _validate(content)
    qr_image = _load_qr_image(content.qr_data_url)
    w, _ = PAGE_SIZE
    center_x = w / 2.0
    text_width = w - _mm(60)

    c.setStrokeColor(ACCENT)
    c.setLineWidth(2)
    c.rect(_mm(10), _mm(10), _mm(277), _mm(190))
    c.setLineWidth(1)
    c.rect(_mm(15), _mm(15), _mm(267), _mm(180))

    c.setFillColor(ACCENT)
    c.setFont("Helvetica-Bold", 28)
    c.drawCentredString(center_x, _y(50), TITLE_TEXT)
    c.line(_mm(50), _y(60), _mm(247), _y(60))

    c.setFillColor(BODY_TEXT)
    c.setFont("Helvetica", 14)
    c.drawCentredString(center_x, _y(80), "This is to certify that")

    name_pt = fit_text(name, "Helvetica-Bold", 24, 14, text_width)
    c.setFillColor(ACCENT)
    c.setFont("Helvetica-Bold", name_pt)
    c.drawCentredString(center_x, _y(100), name)

    c.setFillColor(BODY_TEXT)
    c.setFont("Helvetica", 14)
    c.drawCentredString(center_x, _y(120), "has successfully completed")

    title_pt = fit_text(title, "Helvetica-Bold", 18, 10, text_width)
    c.setFillColor(ACCENT)
    c.setFont("Helvetica-Bold", title_pt)
    c.drawCentredString(center_x, _y(140), title)

    c.setFillColor(BODY_TEXT)
    c.setFont("Helvetica", 12)
    c.drawCentredString(center_x, _y(155), f"Date: {formatted_date}")

    c.drawImage(
        qr_image,
        _mm(QR_X_MM),
        _y(QR_TOP_MM + QR_SIZE_MM),
        width=_mm(QR_SIZE_MM),
        height=_mm(QR_SIZE_MM),
    )
    c.setFont("Helvetica", 8)
    c.drawCentredString(_mm(QR_X_MM + QR_SIZE_MM / 2), _y(190), "Scan to verify")

    c.setFillColor(MUTED_TEXT)
    c.setFont("Helvetica", 10)
    c.drawCentredString(
        center_x, _y(175), f"Certificate ID: {content.certificate_id}"
    )

    c.setStrokeColor(ACCENT)
    c.line(_mm(200), _y(165), _mm(260), _y(165))
    c.setFillColor(BODY_TEXT)
    c.drawCentredString(_mm(230), _y(175), "Authorized Signature")

    if content.footer_text:
        c.setFillColor(ACCENT)
        c.setFont("Helvetica-Bold", 8)
        c.drawCentredString(center_x, _y(195), content.footer_text)


def _merge_onto_template(overlay_pdf: bytes, template_pdf: str) -> bytes:
    try:
        base_page = PdfReader(template_pdf).pages[0]
    except (OSError, IndexError, PdfReadError) as exc:
        raise CertificateRenderError(f"certificate template unusable: {exc}") from exc
    logger.debug("[cert-template] using path=%s", template_pdf)
    overlay_page = PdfReader(BytesIO(overlay_pdf)).pages[0]
    base_page.merge_page(overlay_page)
    writer = PdfWriter()
    writer.add_page(base_page)
    out = BytesIO()
    writer.write(out)
    return out.getvalue()


def render_certificate_pdf(
    content: CertificateContent, *, template_pdf: str | None = None
) -> bytes:
    """Render a one-page landscape certificate and return the PDF bytes.

    Output is byte-for-byte reproducible for identical input: the canvas
    runs in reportlab's invariant mode and no timestamps are drawn.
    """

    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=PAGE_SIZE, invariant=1)
    c.setTitle(f"Certificate {content.certificate_id}")
    try:
        _draw_certificate(c, content)
        c.showPage()
        c.save()
    except CertificateRenderError:
        raise
    except Exception as exc:
        raise CertificateRenderError(f"certificate composition failed: {exc}") from exc
    pdf_bytes = buffer.getvalue()
    if template_pdf:
        pdf_bytes = _merge_onto_template(pdf_bytes, template_pdf)
    return pdf_bytes
