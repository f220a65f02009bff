from wg_fakes import NOW, enabled_peer, key
from wgdash.api.peer_metrics import PeerMetricsCollector
from wgdash.core.channel import ControlChannelUnreachable
from wgdash.core.service import PeerService
from wgdash.enums import CommandKind


def _families(collector: PeerMetricsCollector) -> dict:
    return {family.name: family for family in collector.collect()}


def test_peer_metrics_are_labelled_by_record(engine, store, channel, config) -> None:
    record = enabled_peer(store, channel, config)
    store.create(public_key=key(2), name="Phone", internal_ip="10.0.0.3")

    families = _families(PeerMetricsCollector(PeerService(engine, store, channel)))

    assert families["wgdash_control_channel_up"].samples[0].value == 1
    rx = {s.labels["peer_name"]: s.value for s in families["wgdash_peer_rx_bytes"].samples}
    assert rx == {"Laptop": 1000, "Phone": 0}
    connected = {s.labels["peer_id"]: s.value for s in families["wgdash_peer_connected"].samples}
    assert connected[record.id] == 1
    handshakes = {s.labels["peer_name"]: s.value for s in families["wgdash_peer_latest_handshake_seconds"].samples}
    assert handshakes["Laptop"] == NOW - 30
    assert handshakes["Phone"] == 0
    for family in families.values():
        for sample in family.samples:
            assert record.public_key not in sample.labels.values()


def test_peer_metrics_channel_down(engine, store, channel, config) -> None:
    enabled_peer(store, channel, config)
    channel.fail(CommandKind.DUMP, ControlChannelUnreachable("connection refused"))

    families = _families(PeerMetricsCollector(PeerService(engine, store, channel)))

    assert families["wgdash_control_channel_up"].samples[0].value == 0
    assert [s.value for s in families["wgdash_peer_connected"].samples] == [0]
