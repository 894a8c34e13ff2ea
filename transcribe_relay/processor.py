"""Speaker enrichment of backend transcript events."""

import logging

from transcribe_relay._types import (
    PRONUNCIATION,
    SpeakerSegment,
    SpeakerSummaryMessage,
    TranscriptEvent,
    TranscriptMessage,
)
from transcribe_relay.colors import SpeakerColorRegistry

logger = logging.getLogger(__name__)


class TranscriptProcessor:
    """Turns transcript events into client messages with speaker metadata.

    Keeps per-session speaker state: the current speaker, one SpeakerSegment
    per speaker in first-seen order, and the color registry. Durations and
    word counts are accumulated from final events only, since partials are
    superseded by the final result for the same utterance.
    """

    def __init__(self, registry: SpeakerColorRegistry | None = None):
        self.registry = registry or SpeakerColorRegistry()
        self.segments: dict[str, SpeakerSegment] = {}
        self.current_speaker: str | None = None

    def _segment_for(self, speaker: str) -> SpeakerSegment:
        segment = self.segments.get(speaker)
        if segment is None:
            segment = SpeakerSegment(speaker=speaker, color=self.registry.color_for(speaker))
            self.segments[speaker] = segment
            logger.info("New speaker %s assigned color %s", speaker, segment.color)
        return segment

    def process(self, event: TranscriptEvent) -> TranscriptMessage:
        """Enrich one event and build the outbound transcript message.

        Args:
            event: Event as delivered by the backend

        Returns:
            TranscriptMessage carrying the resolved speaker, per-item colors
            and a snapshot of every speaker seen so far
        """
        if event.speaker:
            self.current_speaker = event.speaker
            self._segment_for(event.speaker)

        items = []
        for item in event.items:
            speaker = item.speaker or self.current_speaker
            color = None
            if speaker:
                segment = self._segment_for(speaker)
                color = segment.color
                if not event.is_partial:
                    segment.duration += item.duration
                    if item.item_type == PRONUNCIATION:
                        segment.word_count += 1
            items.append(
                {
                    "content": item.content,
                    "type": item.item_type,
                    "startTime": item.start_time,
                    "endTime": item.end_time,
                    "speaker": speaker,
                    "speakerColor": color,
                }
            )

        speaker = self.current_speaker
        return TranscriptMessage(
            text=event.text,
            is_partial=event.is_partial,
            speaker=speaker,
            speaker_color=self.registry.color_for(speaker) if speaker else None,
            items=items,
            speaker_segments=self.snapshot(),
        )

    def snapshot(self) -> list[dict]:
        return [segment.snapshot() for segment in self.segments.values()]

    def summary(self) -> SpeakerSummaryMessage | None:
        """Final per-speaker summary, or None if no speaker was ever seen."""
        if not self.segments:
            return None
        return SpeakerSummaryMessage(
            speakers=[segment.summary() for segment in self.segments.values()]
        )
