from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from wgdash.enums import FailureStep, PeerStatus


class HealthCheckResult(BaseModel):
    name: str
    ok: bool
    details: str


class HealthResponse(BaseModel):
    status: str
    checks: list[HealthCheckResult] = Field(default_factory=list)


class PeerTraffic(BaseModel):
    transmitted: int = 0
    received: int = 0


class Peer(BaseModel):
    id: str
    public_key: str
    name: str
    internal_ip: str
    external_ip: str
    status: PeerStatus
    enabled: bool
    data: PeerTraffic
    last_seen: datetime


class ChannelHealth(BaseModel):
    ok: bool
    error_kind: str | None = None
    error: str | None = None


class PeerListResponse(BaseModel):
    interface: str
    observed_at: datetime
    channel: ChannelHealth
    peers: list[Peer] = Field(default_factory=list)


class PeerRename(BaseModel):
    name: str = Field(max_length=128)


class PeerEnabledUpdate(BaseModel):
    enabled: bool


class PeerPartialCompletion(BaseModel):
    enabled: bool
    step: FailureStep
