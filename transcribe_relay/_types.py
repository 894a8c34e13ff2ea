"""Shared types and dataclasses for cross-module use."""

from dataclasses import dataclass, field

PRONUNCIATION = "pronunciation"
PUNCTUATION = "punctuation"


@dataclass
class TranscriptItem:
    """A single timed token from the recognition backend."""

    content: str
    item_type: str = PRONUNCIATION
    start_time: float = 0.0
    end_time: float = 0.0
    speaker: str | None = None

    @property
    def duration(self) -> float:
        return max(0.0, self.end_time - self.start_time)


@dataclass
class TranscriptEvent:
    """Backend-produced recognition result for one utterance.

    Partial events for the same ``result_id`` are superseded by later ones.
    """

    text: str
    is_partial: bool
    speaker: str | None = None
    items: list[TranscriptItem] = field(default_factory=list)
    result_id: str | None = None


@dataclass
class SpeakerSegment:
    """Aggregated state for one speaker seen during a session."""

    speaker: str
    color: str
    duration: float = 0.0
    word_count: int = 0

    def snapshot(self) -> dict:
        return {"speaker": self.speaker, "color": self.color, "duration": self.duration}

    def summary(self) -> dict:
        return {
            "speaker": self.speaker,
            "color": self.color,
            "duration": self.duration,
            "wordCount": self.word_count,
        }


@dataclass
class TranscriptMessage:
    """Outbound ``transcript`` message."""

    text: str
    is_partial: bool
    speaker: str | None = None
    speaker_color: str | None = None
    items: list[dict] = field(default_factory=list)
    speaker_segments: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "type": "transcript",
            "text": self.text,
            "isPartial": self.is_partial,
            "speaker": self.speaker,
            "speakerColor": self.speaker_color,
            "items": self.items,
            "speakerSegments": self.speaker_segments,
        }


@dataclass
class ErrorMessage:
    """Outbound ``error`` message."""

    error: str
    message: str
    fatal: bool

    def to_dict(self) -> dict:
        return {
            "type": "error",
            "error": self.error,
            "message": self.message,
            "fatal": self.fatal,
        }


@dataclass
class SpeakerSummaryMessage:
    """Outbound ``speakerSummary`` message emitted once at teardown."""

    speakers: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"type": "speakerSummary", "speakers": self.speakers}
