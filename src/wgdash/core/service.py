from __future__ import annotations

import logging

from wgdash.core.channel import ControlChannel, build_control_channel
from wgdash.core.durable import build_durable_config
from wgdash.core.engine import ReconciliationEngine
from wgdash.core.store import PeerRecordStore
from wgdash.enums import FailureStep
from wgdash.schemas import ChannelHealth, Peer, PeerListResponse
from wgdash.settings import Settings

logger = logging.getLogger("wgdash.core.service")


class PeerService:
    """Entry point for the API layer. Everything else in `wgdash.core` stays behind it."""

    def __init__(self, engine: ReconciliationEngine, store: PeerRecordStore, channel: ControlChannel) -> None:
        self.engine = engine
        self.store = store
        self.channel = channel

    def list_peers(self) -> PeerListResponse:
        listing = self.engine.list_peers()
        if listing.channel_error is None:
            channel = ChannelHealth(ok=True)
        else:
            channel = ChannelHealth(
                ok=False,
                error_kind=listing.channel_error.kind,
                error=str(listing.channel_error),
            )
        return PeerListResponse(
            interface=self.engine.interface,
            observed_at=listing.observed_at,
            channel=channel,
            peers=listing.peers,
        )

    def set_peer_enabled(self, peer_id: str, enabled: bool) -> Peer:
        return self.engine.set_peer_enabled(peer_id, enabled)

    def rename_peer(self, peer_id: str, name: str) -> Peer:
        # Only the store changes; the returned view comes from a read-only dump that degrades.
        record = self.engine.rename_peer(peer_id, name)
        return self.engine.peer_view(record.id)

    def complete_partial(self, peer_id: str, *, enabled: bool, step: FailureStep) -> Peer:
        return self.engine.complete_partial(peer_id, enabled=enabled, step=step)

    def close(self) -> None:
        self.channel.close()


def build_peer_service(settings: Settings, store: PeerRecordStore) -> PeerService:
    channel = build_control_channel(settings)
    durable = build_durable_config(settings, channel)
    engine = ReconciliationEngine(
        store=store,
        channel=channel,
        durable=durable,
        interface=settings.wg_interface,
    )
    logger.info(
        "peer_service_ready interface=%s control_mode=%s config=%s",
        settings.wg_interface,
        settings.control_mode,
        durable.location,
    )
    return PeerService(engine, store, channel)
