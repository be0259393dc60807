"""UI Theme Constants for Vital.

Colour, font, and sizing constants for the CustomTkinter host shell.
Light content area with a blood-red accent.

This file contains **zero logic**, only ``Final`` constants.
"""

from __future__ import annotations

from typing import Final

# ---------------------------------------------------------------------------
# Colour palette
# ---------------------------------------------------------------------------

CONTENT_BG: Final[str] = "#f5f5f5"
CONTENT_CARD_BG: Final[str] = "#ffffff"

ACCENT_PRIMARY: Final[str] = "#c0392b"
ACCENT_HOVER: Final[str] = "#a93226"
TEXT_PRIMARY: Final[str] = "#1f1f1f"
TEXT_SECONDARY: Final[str] = "#6c757d"

ERROR_TEXT: Final[str] = "#dc3545"
SUCCESS_TEXT: Final[str] = "#27ae60"

# ---------------------------------------------------------------------------
# Fonts
# ---------------------------------------------------------------------------

FONT_FAMILY: Final[str] = "Segoe UI"
FONT_HEADING: Final[tuple[str, int, str]] = (FONT_FAMILY, 20, "bold")
FONT_BODY: Final[tuple[str, int]] = (FONT_FAMILY, 13)
FONT_LABEL: Final[tuple[str, int, str]] = (FONT_FAMILY, 11, "bold")
FONT_SMALL: Final[tuple[str, int]] = (FONT_FAMILY, 11)
FONT_BUTTON: Final[tuple[str, int, str]] = (FONT_FAMILY, 13, "bold")

# ---------------------------------------------------------------------------
# Dimensions
# ---------------------------------------------------------------------------

MAIN_WINDOW_WIDTH: Final[int] = 960
MAIN_WINDOW_HEIGHT: Final[int] = 640
CORNER_RADIUS: Final[int] = 8
PADDING_SM: Final[int] = 8
PADDING_MD: Final[int] = 16
PADDING_LG: Final[int] = 24
FORM_WIDTH: Final[int] = 360
