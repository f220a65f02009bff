from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from wgdash.core.channel import InvalidCommand, validate_allowed_ips, validate_public_key
from wgdash.models import PeerRecordRow

NAME_MAX_LENGTH = 128


class PeerRecordError(RuntimeError):
    pass


class PeerNotFound(PeerRecordError):
    pass


class EmptyName(PeerRecordError):
    pass


class InvalidPeerRecord(PeerRecordError):
    pass


class DuplicatePublicKey(PeerRecordError):
    pass


class StoreUnavailable(PeerRecordError):
    pass


@dataclass(frozen=True)
class PeerRecord:
    id: str
    public_key: str
    name: str
    internal_ip: str

    @property
    def allowed_ips(self) -> str:
        """The record's tunnel address in the form `wg set ... allowed-ips` expects."""
        return validate_allowed_ips(self.internal_ip)

    @staticmethod
    def from_row(row: PeerRecordRow) -> "PeerRecord":
        return PeerRecord(id=str(row.id), public_key=row.public_key, name=row.name, internal_ip=row.internal_ip)


def _normalize_name(value: str) -> str:
    name = str(value or "").strip()
    if not name:
        raise EmptyName("peer name must not be empty")
    if len(name) > NAME_MAX_LENGTH:
        raise InvalidPeerRecord(f"peer name is longer than {NAME_MAX_LENGTH} characters")
    return name


def _row_id(peer_id: str) -> int | None:
    try:
        return int(str(peer_id).strip())
    except (TypeError, ValueError):
        return None


class PeerRecordStore:
    """
    Durable public key -> metadata mapping.

    Every call runs in its own session; writes commit before returning so
    readers only ever observe committed rows.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def ping(self) -> None:
        try:
            with self._session_factory() as session:
                session.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"peer record store is unreachable: {exc}") from exc

    def list(self) -> list[PeerRecord]:
        with self._session_factory() as session:
            rows = session.scalars(select(PeerRecordRow).order_by(PeerRecordRow.id.asc())).all()
            return [PeerRecord.from_row(row) for row in rows]

    def get(self, peer_id: str) -> PeerRecord:
        row_id = _row_id(peer_id)
        if row_id is not None:
            with self._session_factory() as session:
                row = session.get(PeerRecordRow, row_id)
                if row is not None:
                    return PeerRecord.from_row(row)
        raise PeerNotFound(f"peer {peer_id} not found")

    def get_by_public_key(self, public_key: str) -> PeerRecord:
        with self._session_factory() as session:
            row = session.scalar(select(PeerRecordRow).where(PeerRecordRow.public_key == str(public_key).strip()))
            if row is None:
                raise PeerNotFound(f"no peer with public key {public_key}")
            return PeerRecord.from_row(row)

    def rename(self, peer_id: str, new_name: str) -> PeerRecord:
        name = _normalize_name(new_name)
        row_id = _row_id(peer_id)
        if row_id is None:
            raise PeerNotFound(f"peer {peer_id} not found")
        with self._session_factory() as session, session.begin():
            row = session.get(PeerRecordRow, row_id, with_for_update=True)
            if row is None:
                raise PeerNotFound(f"peer {peer_id} not found")
            row.name = name
            session.flush()
            return PeerRecord.from_row(row)

    def create(self, *, public_key: str, name: str, internal_ip: str) -> PeerRecord:
        try:
            key = validate_public_key(public_key)
            validate_allowed_ips(internal_ip)
        except InvalidCommand as exc:
            raise InvalidPeerRecord(str(exc)) from exc
        row = PeerRecordRow(public_key=key, name=_normalize_name(name), internal_ip=str(internal_ip).strip())
        try:
            with self._session_factory() as session, session.begin():
                session.add(row)
                session.flush()
                return PeerRecord.from_row(row)
        except IntegrityError as exc:
            raise DuplicatePublicKey(f"a peer with public key {key} already exists") from exc
