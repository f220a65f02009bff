from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    # Peer names and ids live here. Any SQLAlchemy URL works; SQLite is enough for a single host.
    database_url: str = "sqlite:///./wgdash.db"

    api_host: str = "0.0.0.0"
    api_port: int = 8080
    api_internal_token: str = ""

    # Only one interface is managed per process.
    wg_interface: str = "wg0"
    # Durable wg-quick config. Empty means /etc/wireguard/<wg_interface>.conf on the control host.
    wg_config_path: str = ""

    control_mode: str = "local"  # "local" | "ssh"
    # Prefix control commands with `sudo -n` (the remote user needs passwordless sudo for `wg`).
    control_use_sudo: bool = False
    control_timeout_seconds: float = 10.0

    ssh_host: str = ""
    ssh_port: int = 22
    ssh_user: str = "root"
    ssh_key_path: str = ""
    ssh_password: str = ""
    # When set, unknown host keys are rejected instead of being auto-accepted.
    ssh_known_hosts_path: str = ""
    ssh_connect_timeout_seconds: float = 10.0

    # YAML list of {public_key, name, internal_ip} used by wgdash-seed-peers.
    peer_seed_path: str = ""

    metrics_enabled: bool = True

    def resolved_wg_config_path(self) -> str:
        path = self.wg_config_path.strip()
        if path:
            return path
        return f"/etc/wireguard/{self.wg_interface}.conf"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
