"""
Code39 Barcode

Bar/space encoding, width fitting and reportlab drawing for Code39. Each
character is nine elements (five bars, four spaces) where "w" is a wide
element (3 units) and "n" a narrow one (1 unit). Characters are separated by
a one-unit gap.
"""

from typing import List, Tuple

CODE39_PATTERNS = {
    "0": "nnnwwnwnn",
    "1": "wnnwnnnnw",
    "2": "nnwwnnnnw",
    "3": "wnwwnnnnn",
    "4": "nnnwwnnnw",
    "5": "wnnwwnnnn",
    "6": "nnwwwnnnn",
    "7": "nnnwnnwnw",
    "8": "wnnwnnwnn",
    "9": "nnwwnnwnn",
    "A": "wnnnnwnnw",
    "B": "nnwnnwnnw",
    "C": "wnwnnwnnn",
    "D": "nnnnwwnnw",
    "E": "wnnnwwnnn",
    "F": "nnwnwwnnn",
    "G": "nnnnnwwnw",
    "H": "wnnnnwwnn",
    "I": "nnwnnwwnn",
    "J": "nnnnwwwnn",
    "K": "wnnnnnnww",
    "L": "nnwnnnnww",
    "M": "wnwnnnnwn",
    "N": "nnnnwnnww",
    "O": "wnnnwnnwn",
    "P": "nnwnwnnwn",
    "Q": "nnnnnnwww",
    "R": "wnnnnnwwn",
    "S": "nnwnnnwwn",
    "T": "nnnnwnwwn",
    "U": "wwnnnnnnw",
    "V": "nwwnnnnnw",
    "W": "wwwnnnnnn",
    "X": "nwnnwnnnw",
    "Y": "wwnnwnnnn",
    "Z": "nwwnwnnnn",
    "-": "nwnnnnwnw",
    ".": "wwnnnnwnn",
    " ": "nwwnnnwnn",
    "$": "nwnwnwnnn",
    "/": "nwnwnnnwn",
    "+": "nwnnnwnwn",
    "%": "nnnwnwnwn",
    "*": "nwnnwnwnn",
}

WIDE_FACTOR = 3
MAX_BAR_WIDTH = 1.0
MIN_BAR_WIDTH = 0.6
BAR_WIDTH_STEP = 0.05


def sanitize_code39(value) -> str:
    """Uppercase and drop characters Code39 cannot encode ('*' included)."""
    text = str(value or "").upper()
    return "".join(ch for ch in text if ch in CODE39_PATTERNS and ch != "*")


def encode_code39(value) -> str:
    """Sanitized value wrapped in start/stop characters."""
    return f"*{sanitize_code39(value)}*"


def _element_width(token: str, bar_width: float) -> float:
    return bar_width * WIDE_FACTOR if token == "w" else bar_width


def estimate_code39_width(value, bar_width: float) -> float:
    """Total rendered width of the encoded value at a given narrow-bar width."""
    total = 0.0
    for char in encode_code39(value):
        pattern = CODE39_PATTERNS[char]
        total += sum(_element_width(token, bar_width) for token in pattern)
        total += bar_width
    return total


def fit_bar_width(value, max_width: float) -> float:
    """
    Widest narrow-bar width (1.0 down to 0.6 in 0.05 steps) that fits.

    The result never goes below 0.6 even if the barcode still overflows.
    """
    bar_width = MAX_BAR_WIDTH
    while bar_width > MIN_BAR_WIDTH and estimate_code39_width(value, bar_width) > max_width:
        bar_width = round(bar_width - BAR_WIDTH_STEP, 2)
    return max(MIN_BAR_WIDTH, bar_width)


def code39_bars(value, bar_width: float = MAX_BAR_WIDTH) -> Tuple[List[Tuple[float, float]], float]:
    """
    Bar rectangles for the encoded value.

    Returns:
        ([(x_offset, width), ...], total_width); bars are the even-indexed
        elements of each character pattern
    """
    bars = []
    cursor = 0.0
    for char in encode_code39(value):
        for index, token in enumerate(CODE39_PATTERNS[char]):
            width = _element_width(token, bar_width)
            if index % 2 == 0:
                bars.append((cursor, width))
            cursor += width
        cursor += bar_width
    return bars, cursor


def draw_code39(canvas, value, x: float, y: float, max_width: float, height: float, color=None) -> float:
    """
    Draw a fitted Code39 barcode on a reportlab canvas.

    Args:
        canvas: reportlab Canvas
        value: Text to encode
        x, y: Bottom-left corner in points
        max_width: Width budget used to pick the bar width
        height: Bar height
        color: Fill color (reportlab Color); current fill when None

    Returns:
        The drawn width
    """
    bar_width = fit_bar_width(value, max_width)
    bars, total = code39_bars(value, bar_width)

    canvas.saveState()
    if color is not None:
        canvas.setFillColor(color)
    for offset, width in bars:
        canvas.rect(x + offset, y, width, height, stroke=0, fill=1)
    canvas.restoreState()
    return total
