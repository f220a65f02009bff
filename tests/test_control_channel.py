import base64
import subprocess
from types import SimpleNamespace

import pytest

from wgdash.core import channel as channel_mod
from wgdash.core.channel import (
    ControlChannelAuthFailed,
    ControlChannelCommandFailed,
    ControlChannelTimeout,
    ControlChannelUnreachable,
    InvalidCommand,
    LocalControlChannel,
    SshControlChannel,
    build_control_channel,
    dump_command,
    read_config_command,
    remove_peer_command,
    set_peer_command,
    write_config_command,
)
from wgdash.settings import Settings

KEY = base64.b64encode(b"\x07" * 32).decode("ascii")


def test_commands_build_expected_argv() -> None:
    assert dump_command("wg0").argv() == ["wg", "show", "wg0", "dump"]
    assert remove_peer_command("wg0", KEY).argv() == ["wg", "set", "wg0", "peer", KEY, "remove"]
    assert set_peer_command("wg0", KEY, "10.0.0.2").argv() == [
        "wg",
        "set",
        "wg0",
        "peer",
        KEY,
        "allowed-ips",
        "10.0.0.2/32",
    ]
    assert read_config_command("/etc/wireguard/wg0.conf").argv() == ["cat", "/etc/wireguard/wg0.conf"]

    write = write_config_command("/etc/wireguard/wg0.conf", "[Interface]\n")
    assert write.stdin == "[Interface]\n"
    assert write.argv()[-1] == "/etc/wireguard/wg0.conf"
    assert write.mutating
    assert not dump_command("wg0").mutating


@pytest.mark.parametrize(
    "build",
    [
        lambda: dump_command("wg0; rm -rf /"),
        lambda: dump_command("a-very-long-interface-name"),
        lambda: remove_peer_command("wg0", "--help"),
        lambda: remove_peer_command("wg0", base64.b64encode(b"short").decode()),
        lambda: set_peer_command("wg0", KEY, "10.0.0.2; reboot"),
        lambda: set_peer_command("wg0", KEY, ""),
        lambda: read_config_command("relative/path.conf"),
    ],
)
def test_commands_reject_unsafe_arguments(build) -> None:
    with pytest.raises(InvalidCommand):
        build()


def test_local_channel_returns_stdout(monkeypatch) -> None:
    seen = {}

    def _run(argv, **kwargs):
        seen["argv"] = argv
        seen["kwargs"] = kwargs
        return SimpleNamespace(returncode=0, stdout="dump-output", stderr="")

    monkeypatch.setattr(channel_mod.subprocess, "run", _run)

    result = LocalControlChannel(timeout_seconds=3, use_sudo=True).run(dump_command("wg0"))

    assert result.stdout == "dump-output"
    assert seen["argv"] == ["sudo", "-n", "wg", "show", "wg0", "dump"]
    assert seen["kwargs"]["timeout"] == 3


def test_local_channel_maps_non_zero_exit(monkeypatch) -> None:
    monkeypatch.setattr(
        channel_mod.subprocess,
        "run",
        lambda argv, **kwargs: SimpleNamespace(returncode=1, stdout="", stderr="Unable to access interface"),
    )

    with pytest.raises(ControlChannelCommandFailed) as exc:
        LocalControlChannel(timeout_seconds=3).run(dump_command("wg0"))

    assert exc.value.exit_code == 1
    assert "Unable to access interface" in exc.value.stderr
    assert not exc.value.outcome_unknown


def test_local_channel_timeout_is_ambiguous(monkeypatch) -> None:
    def _run(argv, **kwargs):
        raise subprocess.TimeoutExpired(argv, kwargs["timeout"])

    monkeypatch.setattr(channel_mod.subprocess, "run", _run)

    with pytest.raises(ControlChannelTimeout) as exc:
        LocalControlChannel(timeout_seconds=1).run(remove_peer_command("wg0", KEY))

    assert exc.value.outcome_unknown


def test_local_channel_missing_binary_and_permissions(monkeypatch) -> None:
    def _missing(argv, **kwargs):
        raise FileNotFoundError(argv[0])

    monkeypatch.setattr(channel_mod.subprocess, "run", _missing)
    with pytest.raises(ControlChannelUnreachable):
        LocalControlChannel(timeout_seconds=1).run(dump_command("wg0"))

    def _denied(argv, **kwargs):
        raise PermissionError(argv[0])

    monkeypatch.setattr(channel_mod.subprocess, "run", _denied)
    with pytest.raises(ControlChannelAuthFailed):
        LocalControlChannel(timeout_seconds=1).run(dump_command("wg0"))


def test_build_control_channel_modes() -> None:
    local = build_control_channel(Settings(control_mode="local", _env_file=None))
    assert isinstance(local, LocalControlChannel)

    remote = build_control_channel(Settings(control_mode="SSH", ssh_host="vpn.internal", _env_file=None))
    assert isinstance(remote, SshControlChannel)
    assert remote.config.host == "vpn.internal"

    with pytest.raises(ValueError):
        build_control_channel(Settings(control_mode="ssh", ssh_host="", _env_file=None))
    with pytest.raises(ValueError):
        build_control_channel(Settings(control_mode="telnet", _env_file=None))


def test_ssh_channel_maps_auth_failure(monkeypatch) -> None:
    class _Client:
        def set_missing_host_key_policy(self, policy) -> None:
            pass

        def connect(self, **kwargs) -> None:
            raise channel_mod.paramiko.AuthenticationException("bad key")

        def close(self) -> None:
            pass

    monkeypatch.setattr(channel_mod.paramiko, "SSHClient", _Client)
    ssh = SshControlChannel(channel_mod.SshConfig(host="vpn.internal", user="root"), timeout_seconds=1)

    with pytest.raises(ControlChannelAuthFailed):
        ssh.run(dump_command("wg0"))

    assert ssh._client is None


class _Stream:
    def __init__(self, data: bytes = b"", *, error: Exception | None = None, exit_code: int = 0) -> None:
        self.data = data
        self.error = error
        self.written = ""
        self.channel = SimpleNamespace(shutdown_write=lambda: None, recv_exit_status=lambda: exit_code)

    def read(self) -> bytes:
        if self.error is not None:
            raise self.error
        return self.data

    def write(self, data: str) -> None:
        self.written += data

    def flush(self) -> None:
        pass


class _FlakySshClient:
    """The first session drops while reading the command output; later sessions work."""

    instances: list["_FlakySshClient"] = []

    def __init__(self) -> None:
        self.closed = False
        self.commands: list[str] = []
        _FlakySshClient.instances.append(self)

    def set_missing_host_key_policy(self, policy) -> None:
        pass

    def connect(self, **kwargs) -> None:
        pass

    def exec_command(self, cmdline: str, timeout: float):
        self.commands.append(cmdline)
        if self is _FlakySshClient.instances[0]:
            return _Stream(), _Stream(error=EOFError("session closed")), _Stream()
        return _Stream(), _Stream(b"ok"), _Stream()

    def close(self) -> None:
        self.closed = True


def test_ssh_channel_drop_during_mutation_is_ambiguous_and_reconnects(monkeypatch) -> None:
    _FlakySshClient.instances = []
    monkeypatch.setattr(channel_mod.paramiko, "SSHClient", _FlakySshClient)
    ssh = SshControlChannel(channel_mod.SshConfig(host="vpn.internal", user="root"), timeout_seconds=1)

    with pytest.raises(ControlChannelUnreachable) as exc:
        ssh.run(set_peer_command("wg0", KEY, "10.0.0.2"))

    assert exc.value.outcome_unknown
    assert ssh._client is None
    assert _FlakySshClient.instances[0].closed

    result = ssh.run(dump_command("wg0"))

    assert result.stdout == "ok"
    assert len(_FlakySshClient.instances) == 2
    assert _FlakySshClient.instances[1].commands == ["wg show wg0 dump"]


def test_ssh_channel_drop_during_read_is_not_ambiguous(monkeypatch) -> None:
    _FlakySshClient.instances = []
    monkeypatch.setattr(channel_mod.paramiko, "SSHClient", _FlakySshClient)
    ssh = SshControlChannel(channel_mod.SshConfig(host="vpn.internal", user="root"), timeout_seconds=1)

    with pytest.raises(ControlChannelUnreachable) as exc:
        ssh.run(dump_command("wg0"))

    assert not exc.value.outcome_unknown
    assert ssh._client is None
