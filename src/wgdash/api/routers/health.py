from __future__ import annotations

from fastapi import APIRouter, Depends

from wgdash.api.deps import peer_service
from wgdash.core.channel import ControlChannelError, dump_command
from wgdash.core.service import PeerService
from wgdash.core.store import StoreUnavailable
from wgdash.schemas import HealthCheckResult, HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health(service: PeerService = Depends(peer_service)) -> HealthResponse:
    checks: list[HealthCheckResult] = []

    try:
        service.store.ping()
        checks.append(HealthCheckResult(name="peer record store", ok=True, details="reachable"))
    except StoreUnavailable as exc:
        checks.append(HealthCheckResult(name="peer record store", ok=False, details=str(exc)))

    interface = service.engine.interface
    try:
        service.channel.run(dump_command(interface))
        checks.append(HealthCheckResult(name=f"wireguard {interface}", ok=True, details="dump ok"))
    except ControlChannelError as exc:
        checks.append(HealthCheckResult(name=f"wireguard {interface}", ok=False, details=f"{exc.kind}: {exc}"))

    return HealthResponse(status="ok" if all(row.ok for row in checks) else "degraded", checks=checks)
