"""Streaming transcription via Amazon Transcribe."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable

from transcribe_relay._types import PRONUNCIATION, TranscriptEvent, TranscriptItem
from transcribe_relay.errors import BackendStreamClosed

logger = logging.getLogger(__name__)


def _to_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def convert_result(result) -> TranscriptEvent | None:
    """Convert one SDK transcript result into a TranscriptEvent.

    Args:
        result: ``amazon_transcribe.model.Result``

    Returns:
        TranscriptEvent built from the first alternative, or None if the
        result carries no alternatives
    """
    alternatives = getattr(result, "alternatives", None) or []
    if not alternatives:
        return None

    alternative = alternatives[0]
    items = []
    for item in getattr(alternative, "items", None) or []:
        items.append(
            TranscriptItem(
                content=getattr(item, "content", "") or "",
                item_type=getattr(item, "item_type", None) or PRONUNCIATION,
                start_time=_to_float(getattr(item, "start_time", 0.0)),
                end_time=_to_float(getattr(item, "end_time", 0.0)),
                speaker=getattr(item, "speaker", None),
            )
        )

    # Transcribe labels speakers per item; the first label identifies the event.
    speaker = next((item.speaker for item in items if item.speaker), None)

    return TranscriptEvent(
        text=getattr(alternative, "transcript", "") or "",
        is_partial=bool(getattr(result, "is_partial", False)),
        speaker=speaker,
        items=items,
        result_id=getattr(result, "result_id", None),
    )


class BackendStream:
    """One open recognition stream: an audio sink plus an event source."""

    def __init__(self, sdk_stream):
        self._stream = sdk_stream
        self._input_ended = False
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    async def send_audio(self, chunk: bytes) -> None:
        await self._stream.input_stream.send_audio_event(audio_chunk=chunk)

    async def end_audio(self) -> None:
        """Signal end of audio. Safe to call repeatedly."""
        if self._input_ended:
            return
        self._input_ended = True
        await self._stream.input_stream.end_stream()

    async def events(self) -> AsyncIterator[TranscriptEvent]:
        """Yield transcript events until the backend closes or errors.

        Raises:
            BackendStreamClosed: If the backend ends the stream before audio
                input was ended or the stream aborted
        """
        async for sdk_event in self._stream.output_stream:
            transcript = getattr(sdk_event, "transcript", None)
            if transcript is None:
                continue
            for result in transcript.results or []:
                event = convert_result(result)
                if event is not None:
                    yield event

        if not (self._input_ended or self._aborted):
            raise BackendStreamClosed("Backend ended the transcript stream")

    async def abort(self) -> None:
        """Release the stream. Safe to call repeatedly."""
        if self._aborted:
            return
        self._aborted = True
        try:
            await self.end_audio()
        except Exception as e:
            logger.debug("Ignoring error while ending aborted stream: %s", e)


class TranscribeBackend:
    """Opens Amazon Transcribe streaming sessions.

    Lazy-initializes the SDK client on first open. ``refresh_credentials``
    drops the client so the next open resolves credentials again; static
    keys are re-read through ``credential_loader`` when one is given.
    """

    def __init__(
        self,
        region: str,
        language_code: str = "en-US",
        media_encoding: str = "pcm",
        sample_rate: int = 44100,
        show_speaker_label: bool = True,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        session_token: str | None = None,
        credential_loader: Callable[[], tuple] | None = None,
    ):
        """Initialize the backend.

        Args:
            region: AWS region hosting the streaming endpoint
            language_code: Recognition language (e.g. "en-US")
            media_encoding: Audio encoding sent by clients (pcm, ogg-opus, flac)
            sample_rate: Audio sample rate in Hz
            show_speaker_label: Request speaker diarization
            access_key_id: Static access key; None uses the default chain
            secret_access_key: Static secret key
            session_token: Optional session token for temporary credentials
            credential_loader: Returns fresh (access_key_id, secret_access_key,
                session_token) on refresh
        """
        self.region = region
        self.language_code = language_code
        self.media_encoding = media_encoding
        self.sample_rate = sample_rate
        self.show_speaker_label = show_speaker_label
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.session_token = session_token
        self.credential_loader = credential_loader
        self._client = None
        self._client_lock = asyncio.Lock()
        logger.info(
            "TranscribeBackend initialized: region=%s, language=%s, encoding=%s, "
            "sample_rate=%d, speaker_labels=%s",
            region,
            language_code,
            media_encoding,
            sample_rate,
            show_speaker_label,
        )

    async def _ensure_client_initialized(self) -> None:
        """Lazy-initialize the streaming client on first use.

        Raises:
            RuntimeError: If client initialization fails
        """
        async with self._client_lock:
            if self._client is not None:
                return

            logger.info("Initializing Transcribe streaming client for %s", self.region)

            try:
                from amazon_transcribe.client import TranscribeStreamingClient

                start_time = time.perf_counter()
                kwargs = {"region": self.region}
                if self.access_key_id and self.secret_access_key:
                    from amazon_transcribe.auth import StaticCredentialResolver

                    kwargs["credential_resolver"] = StaticCredentialResolver(
                        access_key_id=self.access_key_id,
                        secret_access_key=self.secret_access_key,
                        session_token=self.session_token,
                    )
                self._client = TranscribeStreamingClient(**kwargs)
                duration = time.perf_counter() - start_time
                logger.info("Transcribe client initialized in %.3f seconds", duration)
            except Exception as e:
                logger.error("Failed to initialize Transcribe client: %s", e)
                raise RuntimeError(f"Failed to initialize Transcribe client: {e}") from e

    async def open(self) -> BackendStream:
        """Start a new streaming transcription.

        Returns:
            BackendStream ready to accept audio

        Raises:
            amazon_transcribe.exceptions.ServiceException: If the service
                rejects the request
        """
        await self._ensure_client_initialized()
        logger.info("Starting stream transcription")
        sdk_stream = await self._client.start_stream_transcription(
            language_code=self.language_code,
            media_sample_rate_hz=self.sample_rate,
            media_encoding=self.media_encoding,
            show_speaker_label=self.show_speaker_label,
        )
        return BackendStream(sdk_stream)

    async def refresh_credentials(self) -> None:
        """Discard the cached client so credentials are resolved again.

        Without a ``credential_loader`` the static keys are reused as-is, so
        only the SDK's default credential chain picks up new values.
        """
        async with self._client_lock:
            self._client = None
            if self.credential_loader is not None:
                (
                    self.access_key_id,
                    self.secret_access_key,
                    self.session_token,
                ) = self.credential_loader()
        logger.info("Transcribe client discarded for credential refresh")
