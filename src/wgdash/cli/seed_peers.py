from __future__ import annotations

import logging
from pathlib import Path

import yaml

from wgdash.core.store import PeerNotFound, PeerRecordStore
from wgdash.db import get_sessionmaker
from wgdash.observability import configure_logging
from wgdash.settings import get_settings

logger = logging.getLogger("wgdash.cli.seed_peers")


class SeedError(RuntimeError):
    pass


def load_seed_rows(path: Path) -> list[dict]:
    """
    Read the pre-provisioned peer list.

    Expected YAML:
      peers:
        - public_key: "<base64>"
          name: "Office Server"
          internal_ip: "10.0.0.3"
    """
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise SeedError(f"cannot load {path}: {exc}") from exc

    rows = raw.get("peers") if isinstance(raw, dict) else raw
    if not isinstance(rows, list):
        raise SeedError(f"{path}: expected a list of peers")
    out: list[dict] = []
    for idx, row in enumerate(rows):
        if not isinstance(row, dict):
            raise SeedError(f"{path}: entry {idx} is not a mapping")
        missing = [key for key in ("public_key", "name", "internal_ip") if not str(row.get(key) or "").strip()]
        if missing:
            raise SeedError(f"{path}: entry {idx} is missing {', '.join(missing)}")
        out.append({key: str(row[key]).strip() for key in ("public_key", "name", "internal_ip")})
    return out


def seed_peers(store: PeerRecordStore, rows: list[dict]) -> int:
    """Create records for unknown public keys. Existing records (and their names) are left alone."""
    created = 0
    for row in rows:
        try:
            store.get_by_public_key(row["public_key"])
            continue
        except PeerNotFound:
            pass
        record = store.create(public_key=row["public_key"], name=row["name"], internal_ip=row["internal_ip"])
        logger.info("peer_seeded peer_id=%s internal_ip=%s", record.id, record.internal_ip)
        created += 1
    return created


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    if not settings.peer_seed_path:
        raise RuntimeError("PEER_SEED_PATH is required")

    rows = load_seed_rows(Path(settings.peer_seed_path))
    created = seed_peers(PeerRecordStore(get_sessionmaker()), rows)
    logger.info("seed_complete created=%s total=%s", created, len(rows))


if __name__ == "__main__":
    main()
