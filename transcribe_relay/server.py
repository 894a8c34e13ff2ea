"""WebSocket listener creating one relay session per client connection."""

import asyncio
import logging
from pathlib import Path

import websockets

from transcribe_relay.backend import TranscribeBackend
from transcribe_relay.config import Config, ConfigError, load_config
from transcribe_relay.session import Session

logger = logging.getLogger(__name__)


class RelayServer:
    """Accepts client connections and runs a Session for each.

    Sessions share nothing: every connection gets its own backend client,
    buffer and speaker state.
    """

    def __init__(self, config: Config, config_path: Path | None = None):
        self.config = config
        self.config_path = config_path
        self.active_sessions: set[Session] = set()

    def load_credentials(self) -> tuple[str | None, str | None, str | None]:
        """Re-read static AWS credentials from the config file and environment.

        Falls back to the credentials loaded at startup if the configuration
        can no longer be read.
        """
        aws = self.config.aws
        try:
            aws = load_config(self.config_path).aws
        except ConfigError as e:
            logger.warning("Could not reload credentials, keeping current ones: %s", e)
        return aws.access_key_id, aws.secret_access_key, aws.session_token

    def create_backend(self) -> TranscribeBackend:
        aws = self.config.aws
        return TranscribeBackend(
            region=aws.region,
            language_code=aws.language_code,
            media_encoding=aws.media_encoding,
            sample_rate=aws.sample_rate,
            show_speaker_label=aws.show_speaker_label,
            access_key_id=aws.access_key_id,
            secret_access_key=aws.secret_access_key,
            session_token=aws.session_token,
            credential_loader=self.load_credentials,
        )

    async def handle_client(self, websocket, path=None) -> None:
        """Run a session for one connection until it closes.

        Args:
            websocket: The WebSocket connection
            path: Optional path (for compatibility)
        """
        session = Session(websocket, self.create_backend(), config=self.config.session)
        remote = getattr(websocket, "remote_address", None)
        logger.info("Client connected from %s (session %s)", remote, session.session_id)
        self.active_sessions.add(session)
        try:
            await session.run()
        finally:
            self.active_sessions.discard(session)
            logger.info(
                "Client disconnected (session %s), %d active",
                session.session_id,
                len(self.active_sessions),
            )

    def listen(self):
        """Return the ``websockets.serve`` context for the configured address."""
        server_cfg = self.config.server
        return websockets.serve(
            self.handle_client,
            server_cfg.host,
            server_cfg.port,
            ping_interval=None,  # sessions run their own heartbeat
            max_size=server_cfg.max_message_size,
        )

    async def serve(self) -> None:
        """Listen for clients until cancelled."""
        server_cfg = self.config.server
        async with self.listen():
            logger.info(
                "Relay listening on ws://%s:%d (region=%s)",
                server_cfg.host,
                server_cfg.port,
                self.config.aws.region,
            )
            await asyncio.Future()
