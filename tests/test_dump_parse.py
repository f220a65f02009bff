from wgdash.core.dump import HANDSHAKE_TIMEOUT_SECONDS, parse_dump, parse_dump_line, peer_status, split_endpoint_host
from wgdash.enums import PeerStatus

KEY_A = "qmFwu6Bq4JzeLJYwm0LSa3VnAXOSpkX1rvXz0B8n4XE="
KEY_B = "Yp3qBvc9WcL6Z1EzCk4Xb8sQdJbVYw0xtZ7xYy8K1mE="

INTERFACE_LINE = "cHJpdmF0ZS1rZXktcGxhY2Vob2xkZXItMDAwMDAwMDA=\tcHVibGljLWtleS1wbGFjZWhvbGRlci0wMDAwMDAwMDA=\t51820\toff"


def test_parse_dump_skips_interface_line_and_reads_peer_fields() -> None:
    text = "\n".join(
        [
            INTERFACE_LINE,
            f"{KEY_A}\t(none)\t1.2.3.4:51820\t10.0.0.2/32\t1700000000\t1000\t2000\toff",
        ]
    )

    peers = parse_dump(text)

    assert list(peers) == [KEY_A]
    peer = peers[KEY_A]
    assert peer.endpoint_host == "1.2.3.4"
    assert peer.allowed_ips == ("10.0.0.2/32",)
    assert peer.internal_ip == "10.0.0.2"
    assert peer.latest_handshake == 1700000000
    assert peer.rx_bytes == 1000
    assert peer.tx_bytes == 2000


def test_parse_dump_is_total_on_garbage() -> None:
    text = "\n".join(
        [
            INTERFACE_LINE,
            "",
            "not a dump line",
            f"{KEY_A}\t(none)\t(none)\t(none)\tnever\t-5\tabc\toff",
            f"{KEY_B}\t(none)",
        ]
    )

    peers = parse_dump(text)

    assert list(peers) == [KEY_A]
    peer = peers[KEY_A]
    assert peer.endpoint_host is None
    assert peer.allowed_ips == ()
    assert peer.internal_ip == ""
    assert peer.latest_handshake == 0
    assert peer.rx_bytes == 0
    assert peer.tx_bytes == 0


def test_parse_dump_empty_input() -> None:
    assert parse_dump("") == {}
    assert parse_dump(INTERFACE_LINE + "\n") == {}


def test_parse_dump_last_duplicate_wins() -> None:
    text = "\n".join(
        [
            INTERFACE_LINE,
            f"{KEY_A}\t(none)\t1.1.1.1:1\t10.0.0.2/32\t10\t1\t1\toff",
            f"{KEY_A}\t(none)\t2.2.2.2:2\t10.0.0.2/32\t20\t5\t6\toff",
        ]
    )

    peers = parse_dump(text)

    assert peers[KEY_A].endpoint_host == "2.2.2.2"
    assert peers[KEY_A].rx_bytes == 5


def test_parse_dump_line_without_interface_skip() -> None:
    text = f"{KEY_A}\t(none)\t(none)\t10.0.0.5/32\t0\t0\t0\toff\n"

    assert list(parse_dump(text, skip_interface_line=False)) == [KEY_A]
    assert parse_dump_line("too\tfew\tfields") is None


def test_split_endpoint_host_handles_ipv6_and_none() -> None:
    assert split_endpoint_host("[2001:db8::1]:51820") == "2001:db8::1"
    assert split_endpoint_host("203.0.113.7:40000") == "203.0.113.7"
    assert split_endpoint_host("(none)") is None
    assert split_endpoint_host("") is None


def test_peer_status_window_boundary() -> None:
    now = 1_700_000_000
    assert peer_status(now - (HANDSHAKE_TIMEOUT_SECONDS - 1), now) == PeerStatus.CONNECTED
    assert peer_status(now - HANDSHAKE_TIMEOUT_SECONDS, now) == PeerStatus.DISCONNECTED
    assert peer_status(now - 3600, now) == PeerStatus.DISCONNECTED
    assert peer_status(0, now) == PeerStatus.DISCONNECTED
