"""
PDF Generator Module

Generates the dealer yard report: KPI cards, days-in-yard buckets, tier
status and the yard list. Uses xhtml2pdf for HTML/CSS to PDF conversion.
"""

from html import escape
from typing import Dict, List, Any, Optional
from io import BytesIO
import logging
from xhtml2pdf import pisa

from dealer_portal.data_processing import count_yard_buckets, process_yard_kpis
from dealer_portal.date_utils import DateWindow, format_date_only

logger = logging.getLogger(__name__)

# Report colors
COLOR_DARK_BLUE = "#212e47"  # Headings
COLOR_NAVY = "#2c3e50"       # Table headers
COLOR_RED = "#d32f2f"        # Under target
COLOR_AMBER = "#f59e0b"      # Over ceiling
COLOR_GREEN = "#16a34a"      # On target
COLOR_GREY = "#666666"       # Grey text
COLOR_LIGHT_GREY = "#f5f5f5" # Light grey backgrounds

STATUS_COLORS = {"under": COLOR_RED, "over": COLOR_AMBER, "ok": COLOR_GREEN}

DEFAULT_SECTIONS = {"kpis": True, "buckets": True, "tiers": True, "yard_list": True}


class PDFGenerationError(Exception):
    """Raised when xhtml2pdf cannot render the report"""
    pass


class YardReportPDFGenerator:
    """
    Generates PDF yard reports using xhtml2pdf.
    """

    def __init__(self, dealer_name: str, report_period: str, logo_path: Optional[str] = None):
        """
        Initialize PDF generator.

        Args:
            dealer_name: Display name of the dealer
            report_period: Report period label (e.g., "Last 30 days")
            logo_path: Path to a logo image (optional)
        """
        self.dealer_name = dealer_name
        self.report_period = report_period
        self.logo_path = logo_path

    def generate(self, report: Dict[str, Any], sections_included: Optional[Dict[str, bool]] = None) -> BytesIO:
        """
        Generate PDF report from a built yard report.

        Args:
            report: Output of ``build_yard_report``
            sections_included: Dict of which sections to include

        Returns:
            BytesIO buffer containing PDF data
        """
        logger.info(f"Generating yard report PDF for {self.dealer_name} - {self.report_period}")

        html_content = self._build_html(report, sections_included or DEFAULT_SECTIONS)

        pdf_buffer = BytesIO()
        pisa_status = pisa.CreatePDF(html_content, dest=pdf_buffer)

        if pisa_status.err:
            logger.error(f"PDF generation failed with error code: {pisa_status.err}")
            raise PDFGenerationError(f"PDF generation failed: {pisa_status.err}")

        pdf_buffer.seek(0)
        logger.info("PDF generated successfully")
        return pdf_buffer

    def _get_css(self) -> str:
        """Get CSS styling for the PDF (xhtml2pdf compatible)"""
        return f"""
        @page {{
            size: a4;
            margin: 2cm 1.5cm;
        }}

        body {{
            font-family: Arial, Helvetica, sans-serif;
            font-size: 10pt;
            color: #333;
        }}

        .header {{
            text-align: right;
            font-size: 8pt;
            color: {COLOR_GREY};
        }}

        .logo {{
            width: 120px;
        }}

        h1 {{
            color: {COLOR_DARK_BLUE};
            font-size: 18pt;
            border-bottom: 2px solid {COLOR_DARK_BLUE};
            padding-bottom: 8px;
        }}

        h2 {{
            color: {COLOR_DARK_BLUE};
            font-size: 13pt;
            margin-top: 24px;
        }}

        table {{
            width: 100%;
            margin: 10px 0;
        }}

        th {{
            background-color: {COLOR_NAVY};
            color: white;
            padding: 6px 8px;
            text-align: left;
            font-size: 9pt;
        }}

        td {{
            padding: 5px 8px;
            border: 1px solid #ddd;
            font-size: 9pt;
        }}

        .kpi-value {{
            font-size: 16pt;
            font-weight: bold;
            color: {COLOR_DARK_BLUE};
        }}

        .note {{
            font-style: italic;
            font-size: 9pt;
            color: {COLOR_GREY};
        }}
        """

    def _build_html(self, report: Dict[str, Any], sections_included: Dict[str, bool]) -> str:
        """Build complete HTML document with embedded CSS"""
        dealer = escape(self.dealer_name)
        period = escape(self.report_period)

        logo = f'<img class="logo" src="{escape(self.logo_path)}"/>' if self.logo_path else ""
        html = f"""
        <html>
        <head>
            <meta charset="UTF-8">
            <title>{dealer} - Yard Report - {period}</title>
            <style>
                {self._get_css()}
            </style>
        </head>
        <body>
            <div class="header">{logo}<br><strong>Snowy River</strong> Dealer Portal</div>
            <h1>{dealer} - Yard Report - {period}</h1>
        """

        if sections_included.get("kpis") and report.get("kpis"):
            html += self._build_kpi_section(report["kpis"])

        if sections_included.get("buckets") and report.get("buckets"):
            html += self._build_bucket_section(report["buckets"])

        if sections_included.get("tiers") and report.get("tiers"):
            html += self._build_tier_section(report["tiers"])

        if sections_included.get("yard_list"):
            html += self._build_yard_list_section(report.get("yard", []))

        html += """
        </body>
        </html>
        """
        return html

    def _build_kpi_section(self, kpis: Dict[str, Any]) -> str:
        stock = kpis.get("yard_stock", {})
        cards = [
            ("Dispatched (PGI)", kpis.get("pgi_count", 0)),
            ("Received", kpis.get("received_count", 0)),
            ("Handovers", kpis.get("handover_count", 0)),
            ("Secondhand handovers", kpis.get("secondhand_count", 0)),
            ("Yard stock", stock.get("total", 0)),
        ]
        cells = "".join(
            f'<td><div class="note">{label}</div><div class="kpi-value">{value}</div></td>'
            for label, value in cards
        )
        return f"""
            <h2>Key Figures</h2>
            <table><tr>{cells}</tr></table>
            <p class="note">Yard stock today: {stock.get('stock', 0)} stock,
            {stock.get('customer', 0)} customer. Yard stock is not limited to the report period.</p>
        """

    def _build_bucket_section(self, buckets: List[Dict[str, Any]]) -> str:
        rows = "".join(
            f"<tr><td>{escape(b['label'])} days</td><td>{b['count']}</td></tr>"
            for b in buckets
        )
        return f"""
            <h2>Days in Yard</h2>
            <table>
                <tr><th>Range</th><th>Units</th></tr>
                {rows}
            </table>
        """

    def _build_tier_section(self, tiers: Dict[str, Any]) -> str:
        rows = ""
        for tier in tiers.get("tiers", []):
            color = STATUS_COLORS.get(tier["status"], COLOR_GREY)
            ceiling = tier["ceiling"] if tier.get("ceiling") is not None else "-"
            rows += f"""
                <tr>
                    <td>{escape(tier['name'])}</td>
                    <td>{tier['actual']}</td>
                    <td>{tier['target']}</td>
                    <td>{tier['minimum']}</td>
                    <td>{ceiling}</td>
                    <td style="color: {color}; font-weight: bold;">{tier['status'].upper()}</td>
                </tr>
            """
        return f"""
            <h2>Tier Targets</h2>
            <table>
                <tr><th>Tier</th><th>Actual</th><th>Target</th><th>Minimum</th><th>Ceiling</th><th>Status</th></tr>
                {rows}
            </table>
            <p class="note">{tiers.get('unassigned', 0)} unit(s) have a model that is not in any tier.</p>
        """

    def _build_yard_list_section(self, entries: List[Dict[str, Any]]) -> str:
        if not entries:
            return """
            <h2>Yard List</h2>
            <p class="note">No units in the yard.</p>
            """

        rows = ""
        for entry in entries:
            rows += f"""
                <tr>
                    <td>{escape(str(entry.get('chassis', '')))}</td>
                    <td>{escape(str(entry.get('model') or '-'))}</td>
                    <td>{escape(str(entry.get('customer') or '-'))}</td>
                    <td>{escape(str(entry.get('type', '')))}</td>
                    <td>{format_date_only(entry.get('received_at'))}</td>
                    <td>{format_age_days(entry.get('days_in_yard', 0))}</td>
                </tr>
            """
        return f"""
            <h2>Yard List</h2>
            <table>
                <tr><th>Chassis</th><th>Model</th><th>Customer</th><th>Type</th><th>Received</th><th>In Yard</th></tr>
                {rows}
            </table>
        """


def build_yard_report(
    pgi_rows: List[Dict[str, Any]],
    yard_entries: List[Dict[str, Any]],
    handovers: List[Dict[str, Any]],
    dealer_slug: str,
    window: DateWindow,
    tier_status: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Collect everything the yard report shows.

    Returns:
        Dictionary with kpis, buckets, tiers and yard (sorted oldest first)
    """
    return {
        "kpis": process_yard_kpis(pgi_rows, yard_entries, handovers, dealer_slug, window),
        "buckets": count_yard_buckets(yard_entries),
        "tiers": tier_status,
        "yard": sorted(yard_entries, key=lambda e: e.get("days_in_yard") or 0, reverse=True),
    }


def generate_yard_report_pdf(
    dealer_name: str,
    report_period: str,
    report: Dict[str, Any],
    sections_included: Optional[Dict[str, bool]] = None,
    output_path: Optional[str] = None
) -> BytesIO:
    """
    Generate a complete yard report PDF.

    Args:
        dealer_name: Dealer display name
        report_period: Report period label
        report: Output of ``build_yard_report``
        sections_included: Dict of which sections to include
        output_path: Optional path to save PDF file

    Returns:
        BytesIO buffer with PDF data
    """
    generator = YardReportPDFGenerator(dealer_name, report_period)
    pdf_buffer = generator.generate(report, sections_included)

    if output_path:
        with open(output_path, 'wb') as f:
            f.write(pdf_buffer.getvalue())
        logger.info(f"PDF saved to {output_path}")

    pdf_buffer.seek(0)
    return pdf_buffer


def format_currency(value: Optional[float]) -> str:
    """Format value as Australian dollars"""
    if value is None:
        return "-"
    return f"A${value:,.2f}"


def format_age_days(days: Any) -> str:
    """Format age in days"""
    try:
        days = int(days)
    except (TypeError, ValueError):
        return "-"
    if days == 0:
        return "Today"
    elif days == 1:
        return "1 day"
    else:
        return f"{days} days"
