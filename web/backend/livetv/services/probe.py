"""
Channel probe.
Runs the player pipeline headlessly against a channel to find out whether,
and through which source, it plays.
"""
import asyncio
import logging
from typing import Optional

from livetv.config import Settings, get_settings
from livetv.models.channel import Channel
from livetv.player.controller import PlayerController, PlayerState
from livetv.player.events import EngineFactory
from livetv.player.hls_engine import HttpMediaPlayback, HttpPlaylistEngine
from livetv.player.media import HeadlessMediaElement

logger = logging.getLogger(__name__)

SETTLED_STATES = (PlayerState.PLAYING, PlayerState.PAUSED, PlayerState.ERROR, PlayerState.ENDED)


class ProbeService:
    """Probe channels with the same failover policy the browser uses."""

    def __init__(
        self,
        engine_factory: Optional[EngineFactory] = None,
        settings: Optional[Settings] = None,
        native_factory: Optional[EngineFactory] = None,
    ):
        self.settings = settings or get_settings()
        self.engine_factory = engine_factory or HttpPlaylistEngine
        self.native_factory = native_factory or HttpMediaPlayback

    async def probe(self, channel: Channel, relay_base: str = "", timeout: Optional[float] = None) -> dict:
        """
        Play the channel until it settles or the timeout passes.

        Args:
            channel: Channel to probe
            relay_base: Absolute origin of this server, prefixed to relay URLs
            timeout: Seconds to wait, defaults to settings

        Returns:
            Outcome summary with state, source, relay mode, levels and error
        """
        timeout = timeout or self.settings.probe_timeout_seconds
        media = HeadlessMediaElement()
        controller = PlayerController(media, self.engine_factory, self.settings, relay_base, self.native_factory)
        settled = asyncio.Event()

        def on_state(player: PlayerController):
            if player.state in SETTLED_STATES:
                settled.set()

        controller.subscribe(on_state)
        try:
            controller.open_channel(channel)
            try:
                await asyncio.wait_for(settled.wait(), timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Probe of {channel.id} timed out after {timeout}s")

            session = controller.session
            return {
                "channel_id": channel.id,
                "status": "ok" if controller.state is PlayerState.PLAYING else "error",
                "state": controller.state.value,
                "source_index": controller.active_source_index,
                "source_count": controller.source_count,
                "use_relay": session.use_relay if session else False,
                "is_live": controller.is_live,
                "levels": [level.model_dump() for level in controller.levels],
                "error": controller.error_kind.value if controller.error_kind else None,
                "message": controller.error_message,
            }
        finally:
            await controller.close()


# Singleton
_probe_service: Optional[ProbeService] = None


def get_probe_service() -> ProbeService:
    """Get or create probe service singleton."""
    global _probe_service
    if _probe_service is None:
        _probe_service = ProbeService()
    return _probe_service
