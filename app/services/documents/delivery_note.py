# app/services/documents/delivery_note.py
"""
Delivery Note Generator
Builds the PDF sent to clients: logo (or text fallback), job details,
equipment line items, captured signature and photos.
"""

import asyncio
import base64
import binascii
import io
from dataclasses import dataclass, field
from datetime import datetime
from xml.sax.saxutils import escape

import httpx
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.completion_domain import LineItem

logger = get_logger(__name__)

BRAND_TEXT = "OOOSH TOURS"
BRAND_FOOTER = "Ooosh Tours Ltd · info@oooshtours.co.uk · www.oooshtours.co.uk"
MAX_PHOTOS_IN_DOCUMENT = 5


class DocumentGenerationError(Exception):
    def __init__(self, message: str, operation: str | None = None, recoverable: bool = False):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@dataclass
class DeliveryNoteData:
    title: str
    venue: str
    job_date: str | None
    hh_ref: str | None
    completed_at: datetime
    client_name: str | None = None
    driver_name: str | None = None
    notes: str | None = None
    items: list[LineItem] = field(default_factory=list)
    signature: str | None = None
    photos: list[str] = field(default_factory=list)
    customer_present: bool = True

    @property
    def filename(self) -> str:
        ref = self.hh_ref or self.completed_at.strftime("%Y%m%d")
        slug = self.title.replace(" ", "-")
        return f"{slug}-{ref}.pdf"


def decode_image(payload: str | None) -> bytes | None:
    """Decode a base64 image, with or without a data: URL prefix."""
    if not payload:
        return None
    raw = payload.split(",", 1)[1] if payload.startswith("data:") else payload
    try:
        return base64.b64decode(raw, validate=False)
    except (binascii.Error, ValueError):
        return None


def _scaled_image(content: bytes, max_width: float, max_height: float) -> Image | None:
    try:
        reader = ImageReader(io.BytesIO(content))
        width, height = reader.getSize()
    except Exception as e:
        logger.warning("Skipping undecodable image", error=str(e))
        return None
    scale = min(max_width / width, max_height / height, 1.0)
    return Image(io.BytesIO(content), width=width * scale, height=height * scale)


def build_delivery_note(data: DeliveryNoteData, logo: bytes | None = None) -> bytes:
    """
    Render the note to PDF bytes.

    Raises:
        DocumentGenerationError: the PDF could not be built
    """
    styles = getSampleStyleSheet()
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        topMargin=15 * mm,
        bottomMargin=15 * mm,
        title=f"{data.title} - {data.venue}",
    )
    story = []

    logo_image = _scaled_image(logo, 60 * mm, 20 * mm) if logo else None
    if logo_image:
        story.append(logo_image)
    else:
        story.append(Paragraph(BRAND_TEXT, styles["Title"]))
    story.append(Spacer(1, 6 * mm))

    story.append(Paragraph(escape(data.title), styles["Heading1"]))
    details = [
        ["Venue", data.venue],
        ["Date", data.job_date or "TBC"],
        ["Job reference", data.hh_ref or "N/A"],
        ["Completed", data.completed_at.strftime("%d %b %Y %H:%M")],
    ]
    if data.client_name:
        details.insert(1, ["Client", data.client_name])
    if data.driver_name:
        details.append(["Driver", data.driver_name])
    details_table = Table(details, colWidths=[40 * mm, 130 * mm])
    details_table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )
    story.append(details_table)
    story.append(Spacer(1, 6 * mm))

    story.append(Paragraph("Equipment", styles["Heading2"]))
    if data.items:
        rows = [["Item", "Qty"]] + [[i.name, str(i.quantity)] for i in data.items]
        items_table = Table(rows, colWidths=[150 * mm, 20 * mm], repeatRows=1)
        items_table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#667eea")),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                    ("ALIGN", (1, 0), (1, -1), "RIGHT"),
                    ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f5f5f5")]),
                    ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#dddddd")),
                ]
            )
        )
        story.append(items_table)
    else:
        story.append(Paragraph("See your hire agreement for the full equipment list.", styles["Normal"]))
    story.append(Spacer(1, 6 * mm))

    if data.notes:
        story.append(Paragraph("Notes", styles["Heading2"]))
        story.append(Paragraph(escape(data.notes).replace("\n", "<br/>"), styles["Normal"]))
        story.append(Spacer(1, 6 * mm))

    signature = decode_image(data.signature)
    if signature:
        signature_image = _scaled_image(signature, 70 * mm, 30 * mm)
        if signature_image:
            story.append(Paragraph("Received by", styles["Heading2"]))
            story.append(signature_image)
            story.append(Spacer(1, 6 * mm))
    elif not data.customer_present:
        story.append(Paragraph("Customer not present - see photos below.", styles["Italic"]))
        story.append(Spacer(1, 4 * mm))

    photos = [decode_image(p) for p in data.photos[:MAX_PHOTOS_IN_DOCUMENT]]
    photo_images = [img for img in (_scaled_image(p, 80 * mm, 60 * mm) for p in photos if p) if img]
    if photo_images:
        story.append(Paragraph("Photos", styles["Heading2"]))
        for image in photo_images:
            story.append(image)
            story.append(Spacer(1, 3 * mm))

    def _footer(canvas, document):
        canvas.saveState()
        canvas.setFont("Helvetica", 8)
        canvas.setFillColor(colors.grey)
        canvas.drawCentredString(A4[0] / 2, 8 * mm, BRAND_FOOTER)
        canvas.restoreState()

    try:
        doc.build(story, onFirstPage=_footer, onLaterPages=_footer)
    except Exception as e:
        raise DocumentGenerationError(f"PDF build failed: {e}", operation="build_delivery_note") from e

    return buffer.getvalue()


class DeliveryNoteGenerator:
    def __init__(self, http_client: httpx.AsyncClient | None = None):
        self._http = http_client

    async def fetch_logo(self) -> bytes | None:
        """Logo bytes, or None so the document falls back to text branding."""
        url = settings.logo_url()
        try:
            if self._http:
                response = await self._http.get(url)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    response = await client.get(url)
            response.raise_for_status()
            return response.content
        except httpx.HTTPError as e:
            logger.warning("Logo fetch failed, using text fallback", url=url, error=str(e))
            return None

    async def generate(self, data: DeliveryNoteData) -> bytes:
        logo = await self.fetch_logo()
        pdf = await asyncio.to_thread(build_delivery_note, data, logo)
        logger.info(
            "Delivery note generated",
            title=data.title,
            hh_ref=data.hh_ref,
            items=len(data.items),
            has_logo=logo is not None,
            size_bytes=len(pdf),
        )
        return pdf


# Singleton instance for application use
delivery_note_generator = DeliveryNoteGenerator()
