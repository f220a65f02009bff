from __future__ import annotations

import logging

from prometheus_client import REGISTRY
from prometheus_client.core import GaugeMetricFamily

from wgdash.core.service import PeerService
from wgdash.enums import PeerStatus

logger = logging.getLogger("wgdash.api.peer_metrics")

_REGISTERED = False


class PeerMetricsCollector:
    """
    Per-peer gauges computed from one peer listing per scrape.

    Labels use the record id and name, never the public key.
    """

    def __init__(self, service: PeerService) -> None:
        self.service = service

    def collect(self):  # noqa: ANN201
        up = GaugeMetricFamily("wgdash_control_channel_up", "WireGuard control channel status (1=ok, 0=error)")
        listing = self.service.list_peers()
        up.add_metric([], 1 if listing.channel.ok else 0)
        yield up

        labels = ["peer_id", "peer_name"]
        rx = GaugeMetricFamily("wgdash_peer_rx_bytes", "WireGuard peer received bytes", labels=labels)
        tx = GaugeMetricFamily("wgdash_peer_tx_bytes", "WireGuard peer transmitted bytes", labels=labels)
        hs = GaugeMetricFamily(
            "wgdash_peer_latest_handshake_seconds",
            "WireGuard peer latest handshake timestamp (unix seconds, 0 when never seen)",
            labels=labels,
        )
        connected = GaugeMetricFamily(
            "wgdash_peer_connected",
            "Peer had a handshake within the liveness window (1=connected)",
            labels=labels,
        )
        for peer in listing.peers:
            row = [peer.id, peer.name]
            rx.add_metric(row, peer.data.received)
            tx.add_metric(row, peer.data.transmitted)
            hs.add_metric(row, max(0.0, peer.last_seen.timestamp()))
            connected.add_metric(row, 1 if peer.status == PeerStatus.CONNECTED else 0)

        yield rx
        yield tx
        yield hs
        yield connected


def register_peer_metrics(service: PeerService) -> None:
    global _REGISTERED  # noqa: PLW0603
    if _REGISTERED:
        return
    REGISTRY.register(PeerMetricsCollector(service))
    _REGISTERED = True
    logger.info("peer_metrics_registered")
