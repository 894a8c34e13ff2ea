"""Stable speaker-to-color assignment."""

import logging

logger = logging.getLogger(__name__)

DEFAULT_PALETTE = (
    "#4F46E5",
    "#DC2626",
    "#059669",
    "#D97706",
    "#7C3AED",
    "#DB2777",
    "#0891B2",
    "#65A30D",
)


class SpeakerColorRegistry:
    """Maps speaker identities to palette colors in first-seen order.

    Colors are drawn round-robin from a fixed palette, so two speakers share a
    color once more speakers than palette entries have been seen.
    """

    def __init__(self, palette: tuple[str, ...] = DEFAULT_PALETTE):
        if not palette:
            raise ValueError("palette must contain at least one color")
        self.palette = tuple(palette)
        self._colors: dict[str, str] = {}

    def color_for(self, speaker: str) -> str:
        """Return the color for ``speaker``, assigning one on first sight."""
        color = self._colors.get(speaker)
        if color is None:
            color = self.palette[len(self._colors) % len(self.palette)]
            self._colors[speaker] = color
            logger.debug("Assigned color %s to speaker %s", color, speaker)
        return color

    def __contains__(self, speaker: str) -> bool:
        return speaker in self._colors

    def __len__(self) -> int:
        return len(self._colors)
