from __future__ import annotations

from dataclasses import dataclass

from wgdash.enums import PeerStatus

# A live session rekeys at least every 2 minutes; no handshake for 3 means the peer is gone.
HANDSHAKE_TIMEOUT_SECONDS = 180

_NO_VALUE = "(none)"


@dataclass(frozen=True)
class LivePeer:
    public_key: str
    endpoint_host: str | None
    allowed_ips: tuple[str, ...]
    internal_ip: str
    latest_handshake: int
    rx_bytes: int
    tx_bytes: int

    def status_at(self, now: float) -> PeerStatus:
        return peer_status(self.latest_handshake, now)


def peer_status(latest_handshake: int, now: float) -> PeerStatus:
    if latest_handshake <= 0:
        return PeerStatus.DISCONNECTED
    if now - latest_handshake < HANDSHAKE_TIMEOUT_SECONDS:
        return PeerStatus.CONNECTED
    return PeerStatus.DISCONNECTED


def _int_or_zero(value: str) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return 0
    return parsed if parsed > 0 else 0


def split_endpoint_host(value: str) -> str | None:
    """
    Host part of a `wg` endpoint: `1.2.3.4:51820`, `[2001:db8::1]:51820` or `(none)`.
    """
    raw = str(value or "").strip()
    if not raw or raw == _NO_VALUE:
        return None
    if raw.startswith("["):
        end = raw.find("]")
        if end == -1:
            return None
        return raw[1:end].strip() or None
    if raw.count(":") == 1:
        host, _ = raw.rsplit(":", 1)
        return host.strip() or None
    return raw


def _split_allowed_ips(value: str) -> tuple[str, ...]:
    raw = str(value or "").strip()
    if not raw or raw == _NO_VALUE:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def parse_dump_line(line: str) -> LivePeer | None:
    fields = line.rstrip("\r\n").split("\t")
    if len(fields) < 7:
        return None
    public_key = fields[0].strip()
    if not public_key:
        return None
    allowed_ips = _split_allowed_ips(fields[3])
    internal_ip = allowed_ips[0].split("/", 1)[0] if allowed_ips else ""
    return LivePeer(
        public_key=public_key,
        endpoint_host=split_endpoint_host(fields[2]),
        allowed_ips=allowed_ips,
        internal_ip=internal_ip,
        latest_handshake=_int_or_zero(fields[4]),
        rx_bytes=_int_or_zero(fields[5]),
        tx_bytes=_int_or_zero(fields[6]),
    )


def parse_dump(text: str, *, skip_interface_line: bool = True) -> dict[str, LivePeer]:
    """
    Parse `wg show <iface> dump` output into live peers keyed by public key.

    The first non-empty line describes the interface itself and is skipped.
    Malformed peer lines are dropped instead of failing the whole poll, and a
    key listed twice keeps its last line.
    """
    peers: dict[str, LivePeer] = {}
    skipped_header = not skip_interface_line
    for line in str(text or "").splitlines():
        if not line.strip():
            continue
        if not skipped_header:
            skipped_header = True
            continue
        peer = parse_dump_line(line)
        if peer is None:
            continue
        peers[peer.public_key] = peer
    return peers
