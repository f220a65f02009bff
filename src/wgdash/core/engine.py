from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from wgdash.core.channel import (
    CommandSpec,
    ControlChannel,
    ControlChannelError,
    dump_command,
    remove_peer_command,
    set_peer_command,
)
from wgdash.core.dump import LivePeer, parse_dump
from wgdash.core.durable import DurableConfig
from wgdash.core.store import PeerRecord, PeerRecordStore
from wgdash.core.wgconf import DurableConfigError, add_peer, has_peer, remove_peer
from wgdash.enums import FailureStep, PeerStatus
from wgdash.schemas import Peer, PeerTraffic

logger = logging.getLogger("wgdash.core.engine")

EPOCH_ZERO = datetime(1970, 1, 1, tzinfo=timezone.utc)
NOT_AVAILABLE = "N/A"


class EngineError(RuntimeError):
    pass


class OutcomeUnknown(EngineError):
    """A mutation may or may not have been applied and the follow-up read failed too."""

    def __init__(self, message: str, *, step: FailureStep, underlying: Exception) -> None:
        super().__init__(message)
        self.step = step
        self.underlying = underlying


class PartialFailure(EngineError):
    """
    One half of an enable/disable went through, the other did not.

    `step` names the half that is still missing; `complete_partial` with the
    same peer id, `enabled` and `step` applies only that half.
    """

    def __init__(
        self,
        *,
        peer_id: str,
        public_key: str,
        enabled: bool,
        step: FailureStep,
        underlying: Exception,
    ) -> None:
        action = "enable" if enabled else "disable"
        super().__init__(f"{action} of peer {peer_id} is incomplete: {step.value} step failed: {underlying}")
        self.peer_id = peer_id
        self.public_key = public_key
        self.enabled = enabled
        self.step = step
        self.underlying = underlying


class StalePartialFailure(EngineError):
    pass


@dataclass(frozen=True)
class PeerListing:
    peers: list[Peer]
    observed_at: datetime
    channel_error: ControlChannelError | None = None


def _epoch_to_datetime(value: float) -> datetime:
    if value <= 0:
        return EPOCH_ZERO
    return datetime.fromtimestamp(value, tz=timezone.utc)


def project_peer(record: PeerRecord, live: LivePeer | None, now: float) -> Peer:
    if live is None:
        return Peer(
            id=record.id,
            public_key=record.public_key,
            name=record.name,
            internal_ip=record.internal_ip,
            external_ip=NOT_AVAILABLE,
            status=PeerStatus.DISCONNECTED,
            enabled=False,
            data=PeerTraffic(transmitted=0, received=0),
            last_seen=EPOCH_ZERO,
        )
    return Peer(
        id=record.id,
        public_key=record.public_key,
        name=record.name,
        internal_ip=record.internal_ip,
        external_ip=live.endpoint_host or NOT_AVAILABLE,
        status=live.status_at(now),
        enabled=True,
        data=PeerTraffic(transmitted=live.tx_bytes, received=live.rx_bytes),
        last_seen=_epoch_to_datetime(live.latest_handshake),
    )


class ReconciliationEngine:
    """
    Merges live `wg` state with persisted peer records and applies enable/disable
    to both the live interface and the durable config.

    Disable removes the live peer before touching the config; enable writes the
    config first. Either way a failure of the second half raises PartialFailure.
    """

    def __init__(
        self,
        *,
        store: PeerRecordStore,
        channel: ControlChannel,
        durable: DurableConfig,
        interface: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.channel = channel
        self.durable = durable
        self.interface = interface
        self.clock = clock
        self._peer_locks: dict[str, threading.Lock] = {}
        self._peer_locks_guard = threading.Lock()
        # The config file is shared by all peers; read-modify-write must not interleave.
        self._config_lock = threading.Lock()

    def _peer_lock(self, peer_id: str) -> threading.Lock:
        with self._peer_locks_guard:
            lock = self._peer_locks.get(peer_id)
            if lock is None:
                lock = threading.Lock()
                self._peer_locks[peer_id] = lock
            return lock

    def _read_live(self) -> dict[str, LivePeer]:
        return parse_dump(self.channel.run(dump_command(self.interface)).stdout)

    def _read_live_or_degrade(self) -> tuple[dict[str, LivePeer], ControlChannelError | None]:
        try:
            return self._read_live(), None
        except ControlChannelError as exc:
            logger.warning(
                "live_read_degraded interface=%s error_kind=%s error=%s",
                self.interface,
                exc.kind,
                exc,
            )
            return {}, exc

    def list_peers(self) -> PeerListing:
        now = self.clock()
        records = self.store.list()
        live, channel_error = self._read_live_or_degrade()
        peers = [project_peer(record, live.get(record.public_key), now) for record in records]
        return PeerListing(peers=peers, observed_at=_epoch_to_datetime(now), channel_error=channel_error)

    def peer_view(self, peer_id: str) -> Peer:
        now = self.clock()
        record = self.store.get(peer_id)
        live, _ = self._read_live_or_degrade()
        return project_peer(record, live.get(record.public_key), now)

    def rename_peer(self, peer_id: str, new_name: str) -> PeerRecord:
        record = self.store.rename(peer_id, new_name)
        logger.info("peer_renamed peer_id=%s", record.id)
        return record

    def set_peer_enabled(self, peer_id: str, enabled: bool) -> Peer:
        record = self.store.get(peer_id)
        # Build (and validate) every command before anything is changed.
        live_command = self._live_command(record, enabled)

        with self._peer_lock(record.id):
            now = self.clock()
            live = self._read_live()
            if (record.public_key in live) == enabled:
                logger.info("peer_toggle_noop peer_id=%s enabled=%s", record.id, enabled)
                return project_peer(record, live.get(record.public_key), now)

            if enabled:
                self._enable(record, live_command)
            else:
                self._disable(record, live_command)

        logger.info("peer_toggled peer_id=%s enabled=%s", record.id, enabled)
        return self.peer_view(record.id)

    def complete_partial(self, peer_id: str, *, enabled: bool, step: FailureStep) -> Peer:
        record = self.store.get(peer_id)
        live_command = self._live_command(record, enabled)

        with self._peer_lock(record.id):
            if step == FailureStep.DURABLE:
                if (record.public_key in self._read_live()) != enabled:
                    raise StalePartialFailure(f"live state of peer {record.id} changed since the failure")
                self._apply_durable(record, enabled)
            else:
                with self._config_lock:
                    configured = has_peer(self.durable.read(), record.public_key)
                if configured != enabled:
                    raise StalePartialFailure(f"durable config of peer {record.id} changed since the failure")
                if (record.public_key in self._read_live()) != enabled:
                    self._apply_live(record, enabled, live_command)

        logger.info("peer_partial_completed peer_id=%s enabled=%s step=%s", record.id, enabled, step.value)
        return self.peer_view(record.id)

    def _live_command(self, record: PeerRecord, enabled: bool) -> CommandSpec:
        if enabled:
            return set_peer_command(self.interface, record.public_key, record.allowed_ips)
        return remove_peer_command(self.interface, record.public_key)

    def _disable(self, record: PeerRecord, live_command: CommandSpec) -> None:
        self._apply_live(record, False, live_command)
        try:
            self._apply_durable(record, False)
        except (DurableConfigError, ControlChannelError, OutcomeUnknown) as exc:
            logger.error(
                "peer_disable_partial peer_id=%s step=%s error=%s",
                record.id,
                FailureStep.DURABLE.value,
                exc,
            )
            raise PartialFailure(
                peer_id=record.id,
                public_key=record.public_key,
                enabled=False,
                step=FailureStep.DURABLE,
                underlying=exc,
            ) from exc

    def _enable(self, record: PeerRecord, live_command: CommandSpec) -> None:
        self._apply_durable(record, True)
        try:
            self._apply_live(record, True, live_command)
        except (ControlChannelError, OutcomeUnknown) as exc:
            logger.error(
                "peer_enable_partial peer_id=%s step=%s error=%s",
                record.id,
                FailureStep.LIVE.value,
                exc,
            )
            raise PartialFailure(
                peer_id=record.id,
                public_key=record.public_key,
                enabled=True,
                step=FailureStep.LIVE,
                underlying=exc,
            ) from exc

    def _apply_live(self, record: PeerRecord, enabled: bool, command: CommandSpec) -> None:
        try:
            self.channel.run(command)
            return
        except ControlChannelError as exc:
            if not exc.outcome_unknown:
                raise
            failure = exc

        # Never repeat the mutation blindly: read back what the interface actually has.
        logger.warning("live_mutation_ambiguous peer_id=%s enabled=%s error=%s", record.id, enabled, failure)
        try:
            live = self._read_live()
        except ControlChannelError as verify_exc:
            raise OutcomeUnknown(
                f"live change for peer {record.id} has unknown outcome: {failure}",
                step=FailureStep.LIVE,
                underlying=failure,
            ) from verify_exc
        if (record.public_key in live) == enabled:
            logger.info("live_mutation_verified peer_id=%s enabled=%s", record.id, enabled)
            return
        raise failure

    def _apply_durable(self, record: PeerRecord, enabled: bool) -> None:
        with self._config_lock:
            current = self.durable.read()
            if enabled:
                updated = add_peer(current, record, record.allowed_ips)
            else:
                updated = remove_peer(current, record.public_key)
            if updated == current:
                return
            try:
                self.durable.write(updated)
                return
            except ControlChannelError as exc:
                if not exc.outcome_unknown:
                    raise
                failure = exc

            logger.warning("durable_write_ambiguous peer_id=%s enabled=%s error=%s", record.id, enabled, failure)
            try:
                written = self.durable.read()
            except ControlChannelError as verify_exc:
                raise OutcomeUnknown(
                    f"config change for peer {record.id} has unknown outcome: {failure}",
                    step=FailureStep.DURABLE,
                    underlying=failure,
                ) from verify_exc
            if has_peer(written, record.public_key) == enabled:
                logger.info("durable_write_verified peer_id=%s enabled=%s", record.id, enabled)
                return
            raise failure
