from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from wgdash.core.store import PeerRecord

_SECTION_RE = re.compile(r"^\s*\[\s*([A-Za-z][A-Za-z0-9]*)\s*\]\s*$")
_KEY_RE = re.compile(r"^\s*([A-Za-z][A-Za-z0-9]*)\s*=\s*(.*?)\s*$")


class DurableConfigError(RuntimeError):
    pass


class MalformedConfig(DurableConfigError):
    pass


def _is_trivia(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith("#") or stripped.startswith(";")


def _strip_inline_comment(value: str) -> str:
    return value.split("#", 1)[0].strip()


@dataclass
class Stanza:
    """
    One `[Section]` of a wg-quick config, kept as raw lines.

    The comment block directly above the header (and one blank line before
    it) is part of the stanza, so removing a peer also removes its label.
    """

    section: str
    lines: list[str] = field(default_factory=list)
    values: list[tuple[str, str]] = field(default_factory=list)

    def get(self, key: str) -> str | None:
        wanted = key.lower()
        for name, value in self.values:
            if name.lower() == wanted:
                return value
        return None

    @property
    def is_peer(self) -> bool:
        return self.section.lower() == "peer"

    @property
    def public_key(self) -> str | None:
        return self.get("PublicKey") if self.is_peer else None

    def render(self) -> str:
        return "".join(self.lines)


@dataclass
class WireguardConfig:
    stanzas: list[Stanza]

    def peer_keys(self) -> list[str]:
        return [s.public_key for s in self.stanzas if s.public_key]

    def find_peer(self, public_key: str) -> int | None:
        for idx, stanza in enumerate(self.stanzas):
            if stanza.public_key == public_key:
                return idx
        return None

    def render(self) -> str:
        return "".join(stanza.render() for stanza in self.stanzas)


def _split_label(pending: list[str]) -> tuple[list[str], list[str]]:
    """
    Split trivia above a section header into (kept, owned).

    A section owns only the comment lines directly above its header plus one
    blank line separating them from what precedes. Anything further up stays
    with the previous section.
    """
    cut = len(pending)
    while cut > 0 and pending[cut - 1].strip():
        cut -= 1
    if cut > 0:
        cut -= 1
    return pending[:cut], pending[cut:]


def parse_config(text: str) -> WireguardConfig:
    stanzas: list[Stanza] = []
    pending: list[str] = []
    for lineno, line in enumerate(str(text or "").splitlines(keepends=True), start=1):
        if _is_trivia(line):
            pending.append(line)
            continue
        section = _SECTION_RE.match(line)
        if section:
            if stanzas:
                kept, owned = _split_label(pending)
                stanzas[-1].lines.extend(kept)
            else:
                owned = pending
            stanzas.append(Stanza(section=section.group(1), lines=[*owned, line]))
            pending = []
            continue
        kv = _KEY_RE.match(line)
        if kv is None:
            raise MalformedConfig(f"line {lineno}: expected 'Key = Value', got {line.strip()!r}")
        if not stanzas:
            raise MalformedConfig(f"line {lineno}: key {kv.group(1)!r} outside of any section")
        current = stanzas[-1]
        current.lines.extend(pending)
        current.lines.append(line)
        current.values.append((kv.group(1), _strip_inline_comment(kv.group(2))))
        pending = []

    if stanzas:
        stanzas[-1].lines.extend(pending)

    interfaces = [s for s in stanzas if s.section.lower() == "interface"]
    if len(interfaces) != 1:
        raise MalformedConfig(f"expected exactly one [Interface] section, found {len(interfaces)}")

    seen: set[str] = set()
    for stanza in stanzas:
        if not stanza.is_peer:
            continue
        key = stanza.public_key
        if not key:
            raise MalformedConfig("[Peer] section without PublicKey")
        if key in seen:
            raise MalformedConfig(f"duplicate [Peer] for public key {key}")
        seen.add(key)
    return WireguardConfig(stanzas=stanzas)


def render_peer_stanza(public_key: str, allowed_ips: str) -> str:
    return f"[Peer]\nPublicKey = {public_key}\nAllowedIPs = {allowed_ips}\n"


def has_peer(text: str, public_key: str) -> bool:
    return parse_config(text).find_peer(public_key) is not None


def add_peer(text: str, record: "PeerRecord", allowed_ips: str) -> str:
    """
    Append a `[Peer]` stanza for `record` unless its key is already configured.

    Everything already in `text` is kept byte for byte.
    """
    config = parse_config(text)
    if config.find_peer(record.public_key) is not None:
        return text

    current = config.render()
    prefix = ""
    if current and not current.endswith("\n"):
        prefix = "\n"
    # The separating blank line is leading trivia of the new stanza, so remove_peer takes it away again.
    return current + prefix + "\n" + render_peer_stanza(record.public_key, allowed_ips)


def remove_peer(text: str, public_key: str) -> str:
    config = parse_config(text)
    idx = config.find_peer(public_key)
    if idx is None:
        return text
    del config.stanzas[idx]
    return config.render()
