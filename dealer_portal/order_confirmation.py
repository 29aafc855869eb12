"""
Order Confirmation PDF

Show commission proof for a confirmed show order, drawn with the reportlab
canvas. Section heights are estimated from wrapped line counts before
anything is drawn, so page breaks are the same for the same input.
"""

import base64
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas as pdf_canvas

from dealer_portal.barcode import draw_code39, sanitize_code39

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 48

HEADER_HEIGHT = 150
ROW_HEIGHT = 24
LINE_HEIGHT = 14
DETAIL_LABEL_WIDTH = 150
CARD_PADDING = 18
CARD_TOP_BLOCK = 90
CARD_MIN_HEIGHT = 180
CARD_INFO_LABEL_WIDTH = 110
CARD_INFO_MIN_ROW = 22
NOTES_TITLE_HEIGHT = 18
NOTES_PADDING = 14
FOOTER_HEIGHT = 70
BARCODE_HEIGHT = 26
BARCODE_MAX_WIDTH = 220

COLOR_ACCENT = colors.Color(33 / 255, 46 / 255, 71 / 255)
COLOR_SOFT_ACCENT = colors.Color(224 / 255, 237 / 255, 250 / 255)
COLOR_SLATE = colors.Color(64 / 255, 73 / 255, 86 / 255)
COLOR_LIGHT_SLATE = colors.Color(120 / 255, 130 / 255, 145 / 255)
COLOR_DIVIDER = colors.Color(230 / 255, 235 / 255, 242 / 255)

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"

DATA_URI_PREFIX = "data:application/pdf;base64,"


class PDFAssetContext:
    """
    Assets shared by generated documents.

    The logo is read once per context, from bytes or a file path.
    """

    def __init__(self, logo_bytes: Optional[bytes] = None, logo_path: Optional[str] = None):
        self._logo_bytes = logo_bytes
        self._logo_path = logo_path
        self._logo_loaded = logo_bytes is not None

    def logo(self) -> Optional[bytes]:
        if not self._logo_loaded:
            self._logo_loaded = True
            path = Path(self._logo_path) if self._logo_path else None
            if path and path.exists():
                self._logo_bytes = path.read_bytes()
            elif path:
                logger.warning(f"Logo not found at {path}")
        return self._logo_bytes


def wrap_text(text: str, font: str, size: float, max_width: float) -> List[str]:
    """Wrap text to a width; empty text is one empty line."""
    lines = simpleSplit(text or "", font, size, max_width)
    return lines or [""]


def detail_rows(order: Dict[str, Any], dealer_name: str, show_name: str = "", recipient_name: str = ""):
    return [
        ("Dealer", dealer_name),
        ("Show", show_name or order.get("show_id") or "Unknown show"),
        ("Salesperson", order.get("salesperson") or recipient_name),
        ("Order ID", order.get("order_id") or "Unavailable"),
        ("Status", order.get("status") or "Pending"),
        ("Order Type", order.get("order_type") or "Not set"),
    ]


def card_rows(order: Dict[str, Any]):
    return [
        ("Model", order.get("model") or "Not set"),
        ("Date", order.get("date") or "Not set"),
        ("Chassis", order.get("chassis_number") or "Not recorded"),
    ]


def _content_width() -> float:
    return PAGE_WIDTH - MARGIN * 2


def _card_value_width() -> float:
    return _content_width() - CARD_PADDING * 2 - CARD_INFO_LABEL_WIDTH - 10


def _notes_width() -> float:
    return _content_width() - NOTES_PADDING * 2


class _Cursor:
    """Top-down cursor that starts a new page when a block will not fit."""

    def __init__(self):
        self.page = 1
        self.y = MARGIN

    def ensure_space(self, height: float) -> bool:
        if self.y + height > PAGE_HEIGHT - MARGIN:
            self.page += 1
            self.y = MARGIN
            return True
        return False


def plan_layout(
    order: Dict[str, Any],
    dealer_name: str,
    show_name: str = "",
    recipient: Optional[Dict[str, Any]] = None
) -> List[Dict[str, Any]]:
    """
    Place each section of the document.

    Args:
        order: Normalized show order
        dealer_name: Dealer shown on the document
        show_name: Show name (falls back to the order's show id)
        recipient: Team member the proof is prepared for

    Returns:
        List of {'section', 'page', 'y', 'height'} in drawing order, with y
        measured from the top of the page
    """
    recipient = recipient or {}
    plan = []
    cursor = _Cursor()

    def place(section, height, reserve, advance):
        cursor.ensure_space(reserve)
        plan.append({"section": section, "page": cursor.page, "y": cursor.y, "height": height})
        cursor.y += advance

    # Header
    place("header", HEADER_HEIGHT, HEADER_HEIGHT + 10, HEADER_HEIGHT + 26)

    # Detail rows
    value_width = _content_width() - DETAIL_LABEL_WIDTH
    rows = detail_rows(order, dealer_name, show_name, recipient.get("member_name", ""))
    details_height = sum(
        max(ROW_HEIGHT, len(wrap_text(value, FONT, 12.5, value_width)) * LINE_HEIGHT)
        for _, value in rows
    )
    place("details", details_height, len(rows) * ROW_HEIGHT + 12, details_height + 16)

    # Prepared-for card
    info_height = sum(
        max(CARD_INFO_MIN_ROW, len(wrap_text(value, FONT, 12, _card_value_width())) * LINE_HEIGHT) + 6
        for _, value in card_rows(order)
    )
    card_height = max(CARD_MIN_HEIGHT, CARD_TOP_BLOCK + info_height + 16)
    place("card", card_height, card_height + 10, card_height + 22)

    # Dealer notes
    notes = (order.get("dealer_notes") or "").strip()
    if notes:
        lines = wrap_text(notes, FONT_BOLD, 11.5, _notes_width())
        notes_height = NOTES_TITLE_HEIGHT + len(lines) * LINE_HEIGHT + NOTES_PADDING * 2 + 8
        place("notes", notes_height, notes_height + 8, notes_height + 20)

    # Barcode footer
    place("footer", FOOTER_HEIGHT, FOOTER_HEIGHT, FOOTER_HEIGHT)

    return plan


class OrderConfirmationPDF:
    """
    Draw show order confirmations.

    Usage:
        >>> pdf = OrderConfirmationPDF(PDFAssetContext(logo_path="logo.png"))
        >>> uri = pdf.generate(order, "Acme RV", show_name="Melbourne Leisurefest")
    """

    def __init__(self, context: Optional[PDFAssetContext] = None):
        self.context = context or PDFAssetContext()

    def generate(
        self,
        order: Dict[str, Any],
        dealer_name: str,
        show_name: str = "",
        recipient: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Render the confirmation.

        Returns:
            ``data:application/pdf;base64,...`` URI
        """
        return DATA_URI_PREFIX + base64.b64encode(
            self.render(order, dealer_name, show_name, recipient)
        ).decode("ascii")

    def render(
        self,
        order: Dict[str, Any],
        dealer_name: str,
        show_name: str = "",
        recipient: Optional[Dict[str, Any]] = None
    ) -> bytes:
        """Render the confirmation to PDF bytes."""
        recipient = recipient or {}
        buffer = BytesIO()
        c = pdf_canvas.Canvas(buffer, pagesize=A4)
        c.setTitle(f"Show Order {order.get('order_id', '')}")

        page = 1
        for block in plan_layout(order, dealer_name, show_name, recipient):
            while page < block["page"]:
                c.showPage()
                page += 1

            top = block["y"]
            section = block["section"]
            if section == "header":
                self._draw_header(c, top)
            elif section == "details":
                self._draw_details(c, top, detail_rows(order, dealer_name, show_name, recipient.get("member_name", "")))
            elif section == "card":
                self._draw_card(c, top, block["height"], order, recipient)
            elif section == "notes":
                self._draw_notes(c, top, block["height"], (order.get("dealer_notes") or "").strip())
            elif section == "footer":
                self._draw_footer(c, top, order.get("order_id") or "Unknown")

        c.save()
        logger.info(f"Generated order confirmation for {order.get('order_id')} ({page} page(s))")
        return buffer.getvalue()

    # -------------------------------------------------------------------------
    # Drawing. Layout positions are top-down; reportlab's origin is bottom-left.
    # -------------------------------------------------------------------------

    @staticmethod
    def _pdf_y(top: float) -> float:
        return PAGE_HEIGHT - top

    def _text(self, c, text, x, top, font, size, color):
        c.setFont(font, size)
        c.setFillColor(color)
        c.drawString(x, self._pdf_y(top), text)

    def _lines(self, c, lines, x, top, font, size, color):
        for index, line in enumerate(lines):
            self._text(c, line, x, top + index * LINE_HEIGHT, font, size, color)

    def _box(self, c, x, top, width, height, radius, fill, stroke=None):
        c.setFillColor(fill)
        if stroke is not None:
            c.setStrokeColor(stroke)
        c.roundRect(x, self._pdf_y(top + height), width, height, radius, stroke=1 if stroke is not None else 0, fill=1)

    def _draw_header(self, c, top):
        width = _content_width()
        c.setLineWidth(1.2)
        self._box(c, MARGIN, top, width, HEADER_HEIGHT, 12, COLOR_SOFT_ACCENT, COLOR_ACCENT)

        logo = self.context.logo()
        if logo:
            logo_w, logo_h = 130, 78
            logo_top = top + HEADER_HEIGHT / 2 - logo_h / 2
            c.drawImage(
                ImageReader(BytesIO(logo)), MARGIN + 18, self._pdf_y(logo_top + logo_h),
                logo_w, logo_h, mask="auto", preserveAspectRatio=True
            )

        text_x = MARGIN + 170
        text_width = PAGE_WIDTH - text_x - MARGIN
        self._text(c, "Snowy River", text_x, top + 46, FONT_BOLD, 22, COLOR_ACCENT)
        self._text(c, "Show Commission Proof", text_x, top + 72, FONT, 15, COLOR_SLATE)
        blurb = wrap_text(
            "This document confirms the approved show order for dealer acknowledgement "
            "and next-step preparation.", FONT, 10.5, text_width
        )
        self._lines(c, blurb, text_x, top + 98, FONT, 10.5, COLOR_LIGHT_SLATE)

    def _draw_details(self, c, top, rows):
        value_width = _content_width() - DETAIL_LABEL_WIDTH
        y = top
        for label, value in rows:
            self._text(c, label, MARGIN, y, FONT_BOLD, 11, COLOR_SLATE)
            lines = wrap_text(value, FONT, 12.5, value_width)
            self._lines(c, lines, MARGIN + DETAIL_LABEL_WIDTH, y, FONT, 12.5, COLOR_ACCENT)
            y += max(ROW_HEIGHT, len(lines) * LINE_HEIGHT)

    def _draw_card(self, c, top, height, order, recipient):
        c.setLineWidth(1)
        self._box(c, MARGIN, top, _content_width(), height, 12, colors.white, COLOR_SOFT_ACCENT)

        badge_top = top + CARD_PADDING
        self._box(c, MARGIN + CARD_PADDING, badge_top, 190, 26, 6, COLOR_SOFT_ACCENT)
        self._text(c, "Snowy River Show Team", MARGIN + CARD_PADDING + 10, badge_top + 18,
                   FONT_BOLD, 10.5, COLOR_ACCENT)

        prepared = badge_top + 26 + 18
        x = MARGIN + CARD_PADDING
        self._text(c, "Prepared for", x, prepared, FONT, 10.5, COLOR_SLATE)
        self._text(c, recipient.get("member_name") or "Salesperson", x, prepared + 18,
                   FONT_BOLD, 12.5, COLOR_ACCENT)
        self._text(c, recipient.get("email") or "", x, prepared + 34, FONT, 9.8, COLOR_LIGHT_SLATE)

        info_y = top + CARD_TOP_BLOCK + 20
        value_x = x + CARD_INFO_LABEL_WIDTH + 10
        for label, value in card_rows(order):
            self._text(c, label, x, info_y, FONT_BOLD, 10.5, COLOR_SLATE)
            lines = wrap_text(value, FONT, 12, _card_value_width())
            self._lines(c, lines, value_x, info_y, FONT, 12, COLOR_ACCENT)
            info_y += max(CARD_INFO_MIN_ROW, len(lines) * LINE_HEIGHT) + 6

    def _draw_notes(self, c, top, height, notes):
        self._box(c, MARGIN, top, _content_width(), height, 10, colors.white, COLOR_SOFT_ACCENT)
        self._text(c, "Dealer Notes", MARGIN + NOTES_PADDING, top + NOTES_PADDING + 10,
                   FONT_BOLD, 11, COLOR_SLATE)
        lines = wrap_text(notes, FONT_BOLD, 11.5, _notes_width())
        self._lines(c, lines, MARGIN + NOTES_PADDING, top + NOTES_PADDING + 28, FONT, 10.8, COLOR_ACCENT)

    def _draw_footer(self, c, top, order_id):
        c.setStrokeColor(COLOR_DIVIDER)
        c.setLineWidth(1)
        c.line(MARGIN, self._pdf_y(top), PAGE_WIDTH - MARGIN, self._pdf_y(top))

        label_top = top + 14
        barcode_top = label_top + 10
        max_width = min(BARCODE_MAX_WIDTH, _content_width() * 0.4)

        self._text(c, sanitize_code39(order_id), MARGIN, label_top, FONT_BOLD, 10.5, COLOR_SLATE)
        drawn = draw_code39(
            c, order_id, MARGIN, self._pdf_y(barcode_top + BARCODE_HEIGHT),
            max_width, BARCODE_HEIGHT, COLOR_ACCENT
        )

        panel_x = MARGIN + min(drawn, max_width) + 18
        panel_width = PAGE_WIDTH - MARGIN - panel_x
        self._box(c, panel_x, barcode_top - 2, panel_width, 44, 8, COLOR_SOFT_ACCENT)
        self._text(c, "Attach to Concur commission request", panel_x + 10, barcode_top + 18,
                   FONT_BOLD, 10.5, COLOR_ACCENT)
        hint = wrap_text("Use this confirmation as the supporting document.", FONT, 9.2, panel_width - 20)
        self._text(c, hint[0], panel_x + 10, barcode_top + 32, FONT, 9.2, COLOR_SLATE)


def generate_order_confirmation(
    order: Dict[str, Any],
    dealer_name: str,
    show_name: str = "",
    recipient: Optional[Dict[str, Any]] = None,
    context: Optional[PDFAssetContext] = None
) -> str:
    """Convenience wrapper returning the confirmation as a data URI."""
    return OrderConfirmationPDF(context).generate(order, dealer_name, show_name, recipient)
