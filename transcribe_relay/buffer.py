"""Inbound audio decoding and the ingestion buffer between client and backend."""

import base64
import binascii
import json
import logging
from collections import deque

from transcribe_relay.errors import ErrorKind, RelayError

logger = logging.getLogger(__name__)

MAX_CHUNK_BYTES = 10 * 1024


def decode_audio_message(raw: str | bytes, max_chunk_bytes: int = MAX_CHUNK_BYTES) -> bytes:
    """Parse an inbound ``{"type": "audio", "chunk": <base64>}`` message.

    Args:
        raw: Text frame received from the client
        max_chunk_bytes: Largest accepted decoded chunk

    Returns:
        Decoded audio bytes

    Raises:
        RelayError: INVALID_CLIENT_MESSAGE for any other shape,
            AUDIO_CHUNK_TOO_LARGE when the decoded chunk exceeds the cap
    """
    if isinstance(raw, bytes):
        raise RelayError(ErrorKind.INVALID_CLIENT_MESSAGE, "Binary frames are not supported")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RelayError(ErrorKind.INVALID_CLIENT_MESSAGE, f"Invalid JSON: {e.msg}") from e

    if not isinstance(data, dict):
        raise RelayError(ErrorKind.INVALID_CLIENT_MESSAGE, "Message must be a JSON object")

    message_type = data.get("type")
    if message_type != "audio":
        raise RelayError(
            ErrorKind.INVALID_CLIENT_MESSAGE, f"Unknown message type: {message_type}"
        )

    chunk = data.get("chunk")
    if not isinstance(chunk, str):
        raise RelayError(
            ErrorKind.INVALID_CLIENT_MESSAGE, "Audio message requires a base64 'chunk' string"
        )

    try:
        audio = base64.b64decode(chunk, validate=True)
    except (binascii.Error, ValueError) as e:
        raise RelayError(ErrorKind.INVALID_CLIENT_MESSAGE, f"Invalid base64 audio: {e}") from e

    if len(audio) > max_chunk_bytes:
        raise RelayError(
            ErrorKind.AUDIO_CHUNK_TOO_LARGE,
            f"Audio chunk of {len(audio)} bytes exceeds {max_chunk_bytes} byte limit",
        )
    return audio


class AudioBuffer:
    """FIFO queue of audio chunks awaiting delivery to the backend.

    Filled by the message handler and drained by the backend supply loop.
    Both run on the same event loop, so a deque needs no locking. When
    ``max_chunks`` is reached the oldest chunk is dropped.
    """

    def __init__(self, max_chunks: int | None = 1000):
        if max_chunks is not None and max_chunks <= 0:
            raise ValueError("max_chunks must be positive")
        self.max_chunks = max_chunks
        self._chunks: deque[bytes] = deque()
        self.dropped = 0

    def push(self, chunk: bytes) -> bool:
        """Append a validated chunk.

        Returns:
            True if the oldest chunk was dropped to make room
        """
        overflow = self.max_chunks is not None and len(self._chunks) >= self.max_chunks
        if overflow:
            self._chunks.popleft()
            self.dropped += 1
            logger.warning(
                "Audio buffer full (%d chunks), dropped oldest chunk (%d dropped so far)",
                self.max_chunks,
                self.dropped,
            )
        self._chunks.append(chunk)
        return overflow

    def pull(self) -> bytes | None:
        """Remove and return the oldest chunk, or None when empty."""
        if not self._chunks:
            return None
        return self._chunks.popleft()

    def clear(self) -> None:
        self._chunks.clear()

    def __len__(self) -> int:
        return len(self._chunks)
