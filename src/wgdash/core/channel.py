from __future__ import annotations

import base64
import binascii
import ipaddress
import logging
import re
import shlex
import socket
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Protocol

import paramiko

from wgdash.enums import CommandKind, ControlMode
from wgdash.observability import observe_control_command
from wgdash.settings import Settings

logger = logging.getLogger("wgdash.core.channel")

# Linux IFNAMSIZ is 16 including the trailing NUL.
_INTERFACE_RE = re.compile(r"^[A-Za-z0-9_.=+-]{1,15}$")

# Writes go to a sibling tmp file first so a dropped session never leaves a truncated config.
_WRITE_CONFIG_SCRIPT = 'umask 077 && cat > "$1.tmp" && mv -f "$1.tmp" "$1"'

_MUTATING_KINDS = frozenset({CommandKind.REMOVE_PEER, CommandKind.SET_PEER, CommandKind.WRITE_CONFIG})


class InvalidCommand(ValueError):
    pass


class ControlChannelError(RuntimeError):
    """
    Base class for control channel failures.

    `outcome_unknown` is set when the command may have been applied on the
    remote side before the failure was observed (timeouts, sessions dropped
    mid-command). Such failures must be resolved with a follow-up read.
    """

    kind = "error"

    def __init__(self, message: str, *, outcome_unknown: bool = False) -> None:
        super().__init__(message)
        self.outcome_unknown = outcome_unknown


class ControlChannelUnreachable(ControlChannelError):
    kind = "unreachable"


class ControlChannelAuthFailed(ControlChannelError):
    kind = "auth_failed"


class ControlChannelTimeout(ControlChannelError):
    kind = "timeout"

    def __init__(self, message: str) -> None:
        super().__init__(message, outcome_unknown=True)


class ControlChannelCommandFailed(ControlChannelError):
    kind = "command_failed"

    def __init__(self, message: str, *, exit_code: int, stderr: str) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


@dataclass(frozen=True)
class CommandSpec:
    kind: CommandKind
    interface: str = ""
    public_key: str = ""
    allowed_ips: str = ""
    path: str = ""
    stdin: str | None = None

    @property
    def mutating(self) -> bool:
        return self.kind in _MUTATING_KINDS

    def argv(self) -> list[str]:
        if self.kind == CommandKind.DUMP:
            return ["wg", "show", self.interface, "dump"]
        if self.kind == CommandKind.REMOVE_PEER:
            return ["wg", "set", self.interface, "peer", self.public_key, "remove"]
        if self.kind == CommandKind.SET_PEER:
            return ["wg", "set", self.interface, "peer", self.public_key, "allowed-ips", self.allowed_ips]
        if self.kind == CommandKind.READ_CONFIG:
            return ["cat", self.path]
        if self.kind == CommandKind.WRITE_CONFIG:
            return ["sh", "-c", _WRITE_CONFIG_SCRIPT, "sh", self.path]
        raise InvalidCommand(f"unsupported command kind: {self.kind}")


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int = 0


def validate_interface(value: str) -> str:
    name = str(value or "").strip()
    if not _INTERFACE_RE.match(name):
        raise InvalidCommand(f"invalid interface name: {value!r}")
    return name


def validate_public_key(value: str) -> str:
    key = str(value or "").strip()
    try:
        raw = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidCommand("public key is not valid base64") from exc
    if len(raw) != 32:
        raise InvalidCommand("public key must decode to 32 bytes")
    return key


def validate_allowed_ips(value: str) -> str:
    items = [item.strip() for item in str(value or "").split(",") if item.strip()]
    if not items:
        raise InvalidCommand("allowed-ips must not be empty")
    out: list[str] = []
    for item in items:
        try:
            iface = ipaddress.ip_interface(item)
        except ValueError as exc:
            raise InvalidCommand(f"invalid allowed-ips entry: {item!r}") from exc
        out.append(f"{iface.ip}/{iface.network.prefixlen}")
    return ",".join(out)


def _validate_path(value: str) -> str:
    path = str(value or "").strip()
    if not path.startswith("/") or any(ch in path for ch in "\n\r\0"):
        raise InvalidCommand(f"config path must be an absolute path: {value!r}")
    return path


def dump_command(interface: str) -> CommandSpec:
    return CommandSpec(kind=CommandKind.DUMP, interface=validate_interface(interface))


def remove_peer_command(interface: str, public_key: str) -> CommandSpec:
    return CommandSpec(
        kind=CommandKind.REMOVE_PEER,
        interface=validate_interface(interface),
        public_key=validate_public_key(public_key),
    )


def set_peer_command(interface: str, public_key: str, allowed_ips: str) -> CommandSpec:
    return CommandSpec(
        kind=CommandKind.SET_PEER,
        interface=validate_interface(interface),
        public_key=validate_public_key(public_key),
        allowed_ips=validate_allowed_ips(allowed_ips),
    )


def read_config_command(path: str) -> CommandSpec:
    return CommandSpec(kind=CommandKind.READ_CONFIG, path=_validate_path(path))


def write_config_command(path: str, content: str) -> CommandSpec:
    return CommandSpec(kind=CommandKind.WRITE_CONFIG, path=_validate_path(path), stdin=content)


class ControlChannel(Protocol):
    def run(self, command: CommandSpec) -> CommandResult: ...

    def close(self) -> None: ...


def _with_sudo(argv: list[str], use_sudo: bool) -> list[str]:
    if not use_sudo:
        return argv
    return ["sudo", "-n", *argv]


def _short(text: str, limit: int = 400) -> str:
    details = (text or "").strip() or "no output"
    if len(details) > limit:
        details = details[:limit].rstrip() + "..."
    return details


def _command_failed(command: CommandSpec, exit_code: int, stderr: str) -> ControlChannelCommandFailed:
    logger.warning(
        "control_command_failed kind=%s exit_code=%s stderr=%s",
        command.kind.value,
        exit_code,
        _short(stderr),
    )
    return ControlChannelCommandFailed(
        f"{command.kind.value} failed with code {exit_code}: {_short(stderr)}",
        exit_code=exit_code,
        stderr=stderr or "",
    )


class LocalControlChannel:
    """Runs `wg` on this host. Commands are independent processes and may run concurrently."""

    def __init__(self, *, timeout_seconds: float, use_sudo: bool = False) -> None:
        self.timeout_seconds = timeout_seconds
        self.use_sudo = use_sudo

    def run(self, command: CommandSpec) -> CommandResult:
        argv = _with_sudo(command.argv(), self.use_sudo)
        started = time.perf_counter()
        outcome = "ok"
        try:
            proc = subprocess.run(
                argv,
                input=command.stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
            if proc.returncode != 0:
                outcome = ControlChannelCommandFailed.kind
                raise _command_failed(command, proc.returncode, proc.stderr)
        except FileNotFoundError as exc:
            outcome = ControlChannelUnreachable.kind
            raise ControlChannelUnreachable(f"{argv[0]} not found") from exc
        except PermissionError as exc:
            outcome = ControlChannelAuthFailed.kind
            raise ControlChannelAuthFailed(f"permission denied running {argv[0]}") from exc
        except subprocess.TimeoutExpired as exc:
            outcome = ControlChannelTimeout.kind
            raise ControlChannelTimeout(f"{command.kind.value} timed out after {self.timeout_seconds}s") from exc
        finally:
            observe_control_command(command.kind.value, outcome, time.perf_counter() - started)
        return CommandResult(stdout=proc.stdout, stderr=proc.stderr, exit_code=proc.returncode)

    def close(self) -> None:
        return None


@dataclass(frozen=True)
class SshConfig:
    host: str
    user: str
    port: int = 22
    key_path: str | None = None
    password: str | None = None
    known_hosts_path: str | None = None
    connect_timeout_seconds: float = 10.0


class SshControlChannel:
    """
    Runs `wg` on a remote host over one lazily established SSH session.

    The session is exclusive: commands are serialized by `_lock`. Any
    transport failure discards the session so the next call reconnects.
    """

    def __init__(self, config: SshConfig, *, timeout_seconds: float, use_sudo: bool = False) -> None:
        self.config = config
        self.timeout_seconds = timeout_seconds
        self.use_sudo = use_sudo
        self._client: paramiko.SSHClient | None = None
        self._lock = threading.Lock()

    def _connect(self) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        if self.config.known_hosts_path:
            client.load_host_keys(self.config.known_hosts_path)
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.config.host,
                port=self.config.port,
                username=self.config.user,
                password=self.config.password or None,
                key_filename=self.config.key_path or None,
                timeout=self.config.connect_timeout_seconds,
                look_for_keys=False,
                allow_agent=False,
            )
        except paramiko.AuthenticationException as exc:
            client.close()
            raise ControlChannelAuthFailed(f"ssh authentication failed for {self.config.user}@{self.config.host}") from exc
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise ControlChannelUnreachable(f"cannot reach {self.config.host}:{self.config.port}: {exc}") from exc
        logger.info("ssh_session_opened host=%s port=%s user=%s", self.config.host, self.config.port, self.config.user)
        return client

    def _discard(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            finally:
                self._client = None
            logger.info("ssh_session_closed host=%s", self.config.host)

    def _execute(self, client: paramiko.SSHClient, command: CommandSpec) -> CommandResult:
        cmdline = shlex.join(_with_sudo(command.argv(), self.use_sudo))
        try:
            stdin, stdout, stderr = client.exec_command(cmdline, timeout=self.timeout_seconds)
        except (paramiko.SSHException, OSError) as exc:
            self._discard()
            raise ControlChannelUnreachable(f"cannot open ssh channel: {exc}") from exc

        # From here on the remote side may already be executing the command.
        try:
            if command.stdin is not None:
                stdin.write(command.stdin)
                stdin.flush()
            stdin.channel.shutdown_write()
            out = stdout.read().decode("utf-8", "replace")
            err = stderr.read().decode("utf-8", "replace")
            code = stdout.channel.recv_exit_status()
        except socket.timeout as exc:
            self._discard()
            raise ControlChannelTimeout(f"{command.kind.value} timed out after {self.timeout_seconds}s") from exc
        except (paramiko.SSHException, OSError, EOFError) as exc:
            self._discard()
            raise ControlChannelUnreachable(
                f"ssh session dropped during {command.kind.value}: {exc}",
                outcome_unknown=command.mutating,
            ) from exc
        return CommandResult(stdout=out, stderr=err, exit_code=code)

    def run(self, command: CommandSpec) -> CommandResult:
        started = time.perf_counter()
        outcome = "ok"
        try:
            with self._lock:
                if self._client is None:
                    self._client = self._connect()
                result = self._execute(self._client, command)
            if result.exit_code != 0:
                raise _command_failed(command, result.exit_code, result.stderr)
        except ControlChannelError as exc:
            outcome = exc.kind
            raise
        finally:
            observe_control_command(command.kind.value, outcome, time.perf_counter() - started)
        return result

    def close(self) -> None:
        with self._lock:
            self._discard()


def build_control_channel(settings: Settings) -> ControlChannel:
    try:
        mode = ControlMode(str(settings.control_mode or "").strip().lower())
    except ValueError as exc:
        raise ValueError(f"unsupported CONTROL_MODE: {settings.control_mode!r}") from exc

    if mode == ControlMode.LOCAL:
        return LocalControlChannel(
            timeout_seconds=settings.control_timeout_seconds,
            use_sudo=settings.control_use_sudo,
        )

    if not settings.ssh_host:
        raise ValueError("SSH_HOST is required when CONTROL_MODE=ssh")
    return SshControlChannel(
        SshConfig(
            host=settings.ssh_host,
            user=settings.ssh_user,
            port=settings.ssh_port,
            key_path=settings.ssh_key_path or None,
            password=settings.ssh_password or None,
            known_hosts_path=settings.ssh_known_hosts_path or None,
            connect_timeout_seconds=settings.ssh_connect_timeout_seconds,
        ),
        timeout_seconds=settings.control_timeout_seconds,
        use_sudo=settings.control_use_sudo,
    )
