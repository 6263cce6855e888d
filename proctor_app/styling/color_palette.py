"""Color palette for the ProctorQt console supporting light and dark themes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto


class Theme(Enum):
    """Application theme options."""
    LIGHT = auto()
    DARK = auto()


@dataclass(frozen=True)
class ThemeColors:
    """Color definitions for a specific theme."""
    light: str
    dark: str

    def get(self, theme: Theme) -> str:
        return self.light if theme == Theme.LIGHT else self.dark


class ColorPalette:
    """Centralized color definitions for the console."""

    TEXT_PRIMARY = ThemeColors(light="#000000", dark="#F5F5F5")
    TEXT_SECONDARY = ThemeColors(light="#666666", dark="#AAAAAA")

    BACKGROUND_PRIMARY = ThemeColors(light="#FFFFFF", dark="#1E1E1E")
    BACKGROUND_SECONDARY = ThemeColors(light="#F5F5F5", dark="#2D2D2D")

    BORDER_PRIMARY = ThemeColors(light="#D1D1D1", dark="#555555")

    BUTTON_PRIMARY_BG = ThemeColors(light="#0078D4", dark="#4A9EFF")
    BUTTON_PRIMARY_TEXT = ThemeColors(light="#FFFFFF", dark="#000000")
    BUTTON_SECONDARY_BG = ThemeColors(light="#F5F5F5", dark="#3A3A3A")
    BUTTON_HOVER_BG = ThemeColors(light="#E8E8E8", dark="#505050")

    # Student tile states
    ONLINE = ThemeColors(
        light="#107C10",      # Green
        dark="#6FCF6F"
    )

    OFFLINE = ThemeColors(
        light="#8A8A8A",      # Gray
        dark="#777777"
    )

    COUNTDOWN = ThemeColors(
        light="#FFB900",      # Amber
        dark="#FFC83D"
    )

    FINAL_WARNING = ThemeColors(
        light="#D13438",      # Red
        dark="#FF6B6B"
    )

    SUBMITTED = ThemeColors(
        light="#0078D4",      # Blue
        dark="#4A9EFF"
    )

    VIDEO_BG = ThemeColors(light="#000000", dark="#000000")

    # Violation log severities
    SEVERITY_HIGH = ThemeColors(light="#D13438", dark="#FF6B6B")
    SEVERITY_MEDIUM = ThemeColors(light="#CA5010", dark="#FF9F5A")
    SEVERITY_LOW = ThemeColors(light="#666666", dark="#AAAAAA")

    @classmethod
    def for_severity(cls, severity: str) -> ThemeColors:
        return {
            "high": cls.SEVERITY_HIGH,
            "medium": cls.SEVERITY_MEDIUM,
        }.get(severity, cls.SEVERITY_LOW)
