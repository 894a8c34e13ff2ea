"""Per-connection async state machine relaying audio and transcripts."""

import asyncio
import json
import logging
import uuid
from enum import Enum

import websockets

from transcribe_relay.backend import BackendStream, TranscribeBackend
from transcribe_relay.buffer import AudioBuffer, decode_audio_message
from transcribe_relay.config import SessionConfig
from transcribe_relay.errors import (
    CLOSE_INTERNAL_ERROR,
    CLOSE_NORMAL,
    ErrorKind,
    RelayError,
    classify_backend_error,
)
from transcribe_relay.heartbeat import HeartbeatMonitor
from transcribe_relay.processor import TranscriptProcessor
from transcribe_relay._types import ErrorMessage

logger = logging.getLogger(__name__)

# WebSocket close reasons are limited to 123 bytes of UTF-8.
MAX_CLOSE_REASON_BYTES = 123


class State(Enum):
    """Session state."""

    IDLE = "idle"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    TERMINATED = "terminated"


def _close_reason(message: str) -> str:
    encoded = message.encode("utf-8")[:MAX_CLOSE_REASON_BYTES]
    return encoded.decode("utf-8", errors="ignore")


class Session:
    """Relays one client's audio to the backend and transcripts back.

    Three activities share the session: the inbound message loop (``run``),
    the audio supply loop feeding the backend, and the transcript consumption
    loop. The stream is opened on the first valid audio chunk.
    """

    def __init__(
        self,
        connection,
        backend: TranscribeBackend,
        config: SessionConfig | None = None,
        processor: TranscriptProcessor | None = None,
    ):
        """Initialize session for an accepted connection.

        Args:
            connection: Open WebSocket connection to the client
            backend: Backend used to open recognition streams
            config: SessionConfig with limits and timings
            processor: TranscriptProcessor holding speaker state
        """
        self.connection = connection
        self.backend = backend
        self.config = config or SessionConfig()
        self.processor = processor or TranscriptProcessor()
        self.session_id = str(uuid.uuid4())[:8]

        self.state = State.IDLE
        self.client_connected = True
        self.buffer = AudioBuffer(max_chunks=self.config.max_buffered_chunks)
        self.heartbeat = HeartbeatMonitor(connection, self.config.heartbeat_interval)
        self.stream: BackendStream | None = None
        self.stream_attempts = 0
        self._stream_task: asyncio.Task | None = None
        self._shutdown_started = False

        logger.info("Session %s initialized in IDLE state", self.session_id)

    @property
    def transcribing(self) -> bool:
        return self.state in (State.STREAMING, State.RECONNECTING)

    def _transition(self, new_state: State) -> None:
        if new_state is not self.state:
            logger.info(
                "Session %s state transition: %s -> %s",
                self.session_id,
                self.state.name,
                new_state.name,
            )
            self.state = new_state

    async def run(self) -> None:
        """Handle inbound messages until the client goes away.

        Always finishes with ``shutdown``.
        """
        logger.info("Session %s started", self.session_id)
        self.heartbeat.start()
        try:
            async for message in self.connection:
                await self.handle_message(message)
        except websockets.exceptions.ConnectionClosed as e:
            logger.info("Session %s: client connection closed (%s)", self.session_id, e)
        except asyncio.CancelledError:
            logger.info("Session %s cancelled", self.session_id)
            raise
        except Exception as e:
            logger.error("Session %s: connection error: %s", self.session_id, e, exc_info=True)
        finally:
            self.client_connected = False
            await self.shutdown()

    async def handle_message(self, raw) -> None:
        """Validate one client message and queue its audio.

        Invalid or oversized input is reported to the client without
        ending the session.
        """
        if self.state is State.TERMINATED:
            logger.debug("Session %s: dropping message after termination", self.session_id)
            return

        try:
            chunk = decode_audio_message(raw, self.config.max_chunk_bytes)
        except RelayError as e:
            logger.warning(
                "Session %s: rejected client message (%s): %s",
                self.session_id,
                e.kind.value,
                e.message,
            )
            await self._send(ErrorMessage(e.kind.value, e.message, fatal=False))
            return

        if self.buffer.push(chunk):
            # The error taxonomy is closed; overflow is the client outpacing the relay.
            await self._send(
                ErrorMessage(
                    ErrorKind.INVALID_CLIENT_MESSAGE.value,
                    f"Audio buffer full ({self.buffer.max_chunks} chunks), "
                    "oldest chunk dropped",
                    fatal=False,
                )
            )
        if self.state is State.IDLE:
            self._start_streaming()

    def _start_streaming(self) -> None:
        self._transition(State.STREAMING)
        self._stream_task = asyncio.create_task(self._stream_loop())

    async def _stream_loop(self) -> None:
        """Open backend streams, reconnecting once on credential expiry."""
        while True:
            self.stream_attempts += 1
            logger.debug(
                "Session %s: opening backend stream (attempt %d/%d)",
                self.session_id,
                self.stream_attempts,
                self.config.max_stream_attempts,
            )
            try:
                await self._run_stream()
                logger.info("Session %s: backend stream finished", self.session_id)
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                kind = classify_backend_error(e)

            if not self.transcribing:
                logger.debug(
                    "Session %s: ignoring %s after termination", self.session_id, kind.value
                )
                return

            if kind.retryable and self.stream_attempts < self.config.max_stream_attempts:
                await self._reconnect(kind)
                if self.state is not State.RECONNECTING:
                    return
                self._transition(State.STREAMING)
                continue

            await self._fail(kind)
            return

    async def _reconnect(self, kind: ErrorKind) -> None:
        self._transition(State.RECONNECTING)
        logger.warning(
            "Session %s: %s, refreshing credentials and reconnecting in %.1fs",
            self.session_id,
            kind.value,
            self.config.reconnect_delay,
        )
        await self._send(
            ErrorMessage(kind.value, f"{kind.description}, reconnecting", fatal=False)
        )
        await self.backend.refresh_credentials()
        await asyncio.sleep(self.config.reconnect_delay)

    async def _run_stream(self) -> None:
        """Run one backend stream until it ends or fails.

        Raises:
            Exception: Whatever the backend raised, for classification
        """
        stream = await self.backend.open()
        self.stream = stream
        supply = asyncio.create_task(self._supply_audio(stream))
        consume = asyncio.create_task(self._consume_events(stream))
        try:
            done, _ = await asyncio.wait(
                {supply, consume}, return_when=asyncio.FIRST_EXCEPTION
            )
            for task in (consume, supply):
                if task in done and not task.cancelled() and task.exception():
                    raise task.exception()
        finally:
            for task in (supply, consume):
                if not task.done():
                    task.cancel()
            await asyncio.gather(supply, consume, return_exceptions=True)
            await stream.abort()
            if self.stream is stream:
                self.stream = None

    async def _supply_audio(self, stream: BackendStream) -> None:
        """Forward buffered chunks to the backend in arrival order."""
        sent = 0
        while self.transcribing and self.client_connected and not stream.aborted:
            chunk = self.buffer.pull()
            if chunk is None:
                await asyncio.sleep(self.config.poll_interval)
                continue
            await stream.send_audio(chunk)
            sent += 1
        logger.debug("Session %s: audio supply stopped after %d chunks", self.session_id, sent)
        if not stream.aborted:
            await stream.end_audio()

    async def _consume_events(self, stream: BackendStream) -> None:
        async for event in stream.events():
            message = self.processor.process(event)
            await self._send(message)

    async def _fail(self, kind: ErrorKind) -> None:
        """Report a fatal error once and end the session."""
        if self.state is State.TERMINATED:
            return
        message = kind.description
        logger.error("Session %s: fatal error %s: %s", self.session_id, kind.value, message)
        self._transition(State.TERMINATED)
        await self._send(ErrorMessage(kind.value, message, fatal=True))
        await self.shutdown(code=CLOSE_INTERNAL_ERROR, reason=message)

    async def shutdown(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        """Tear down the session. Safe to call repeatedly.

        Stops audio supply, cancels the heartbeat, aborts the backend stream,
        emits the speaker summary if any speaker was seen, and closes the
        connection.
        """
        if self._shutdown_started:
            return
        self._shutdown_started = True
        logger.info("Session %s shutdown starting", self.session_id)
        self._transition(State.TERMINATED)

        await self.heartbeat.stop()

        stream = self.stream
        if stream is not None:
            try:
                await stream.abort()
                logger.debug("Session %s: backend stream aborted", self.session_id)
            except Exception as e:
                logger.warning("Session %s: error aborting backend stream: %s", self.session_id, e)

        task = self._stream_task
        if task and not task.done() and task is not asyncio.current_task():
            logger.debug("Session %s: cancelling stream task", self.session_id)
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=5.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

        summary = self.processor.summary()
        if summary is not None:
            logger.info(
                "Session %s: sending summary for %d speaker(s)",
                self.session_id,
                len(summary.speakers),
            )
            await self._send(summary)

        self.client_connected = False
        await self._close(code, reason)
        self.buffer.clear()
        logger.info("Session %s shutdown complete", self.session_id)

    async def _send(self, message) -> None:
        try:
            await self.connection.send(json.dumps(message.to_dict()))
        except websockets.exceptions.ConnectionClosed as e:
            logger.debug("Session %s: send skipped, connection closed: %s", self.session_id, e)
            self.client_connected = False

    async def _close(self, code: int, reason: str) -> None:
        try:
            await self.connection.close(code=code, reason=_close_reason(reason))
        except Exception as e:
            logger.warning("Session %s: error closing connection: %s", self.session_id, e)
