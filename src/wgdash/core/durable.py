from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol

from wgdash.core.channel import ControlChannel, LocalControlChannel, read_config_command, write_config_command
from wgdash.core.wgconf import DurableConfigError
from wgdash.settings import Settings


class DurableConfig(Protocol):
    """Where the wg-quick config lives. Reads and writes whole-file text."""

    location: str

    def read(self) -> str: ...

    def write(self, content: str) -> None: ...


class LocalConfigFile:
    def __init__(self, path: Path) -> None:
        self.path = path
        self.location = str(path)

    def read(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise DurableConfigError(f"cannot read {self.path}: {exc}") from exc

    def write(self, content: str) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            # Created 0600 up front: the config holds the interface PrivateKey.
            tmp.unlink(missing_ok=True)
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise DurableConfigError(f"cannot write {self.path}: {exc}") from exc


class ChannelConfigFile:
    """Config file on the control host, read and written through the control channel."""

    def __init__(self, channel: ControlChannel, path: str) -> None:
        self.channel = channel
        self.path = path
        self.location = path

    def read(self) -> str:
        return self.channel.run(read_config_command(self.path)).stdout

    def write(self, content: str) -> None:
        self.channel.run(write_config_command(self.path, content))


def build_durable_config(settings: Settings, channel: ControlChannel) -> DurableConfig:
    path = settings.resolved_wg_config_path()
    # Without sudo a local file is written directly; otherwise it needs the same privileges as `wg`.
    if isinstance(channel, LocalControlChannel) and not settings.control_use_sudo:
        return LocalConfigFile(Path(path))
    return ChannelConfigFile(channel, path)
