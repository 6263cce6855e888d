"""Styling module for the ProctorQt console."""

from .color_palette import ColorPalette, Theme

__all__ = ["ColorPalette", "Theme"]
