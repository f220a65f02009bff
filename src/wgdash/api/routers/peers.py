from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, status

from wgdash.api.deps import peer_service
from wgdash.core.channel import ControlChannelError, ControlChannelTimeout, InvalidCommand
from wgdash.core.engine import OutcomeUnknown, PartialFailure, StalePartialFailure
from wgdash.core.service import PeerService
from wgdash.core.store import EmptyName, InvalidPeerRecord, PeerNotFound
from wgdash.core.wgconf import DurableConfigError
from wgdash.schemas import Peer, PeerEnabledUpdate, PeerListResponse, PeerPartialCompletion, PeerRename
from wgdash.security import require_api_token

router = APIRouter(prefix="/peers", tags=["peers"], dependencies=[Depends(require_api_token)])


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, PeerNotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, (EmptyName, InvalidPeerRecord, InvalidCommand)):
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if isinstance(exc, PartialFailure):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": str(exc),
                "peer_id": exc.peer_id,
                "enabled": exc.enabled,
                "step": exc.step.value,
            },
        ) from exc
    if isinstance(exc, StalePartialFailure):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, (OutcomeUnknown, ControlChannelTimeout)):
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc)) from exc
    if isinstance(exc, ControlChannelError):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"{exc.kind}: {exc}") from exc
    if isinstance(exc, DurableConfigError):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    raise exc


_DOMAIN_ERRORS = (
    PeerNotFound,
    EmptyName,
    InvalidPeerRecord,
    InvalidCommand,
    PartialFailure,
    StalePartialFailure,
    OutcomeUnknown,
    ControlChannelError,
    DurableConfigError,
)


@router.get("", response_model=PeerListResponse)
def list_peers(service: PeerService = Depends(peer_service)) -> PeerListResponse:
    return service.list_peers()


@router.put("/{peer_id}/enabled", response_model=Peer)
def set_peer_enabled(
    peer_id: str,
    payload: PeerEnabledUpdate,
    service: PeerService = Depends(peer_service),
) -> Peer:
    try:
        return service.set_peer_enabled(peer_id, payload.enabled)
    except _DOMAIN_ERRORS as exc:
        _raise_http(exc)


@router.patch("/{peer_id}", response_model=Peer)
def rename_peer(peer_id: str, payload: PeerRename, service: PeerService = Depends(peer_service)) -> Peer:
    try:
        return service.rename_peer(peer_id, payload.name)
    except _DOMAIN_ERRORS as exc:
        _raise_http(exc)


@router.post("/{peer_id}/complete", response_model=Peer)
def complete_partial(
    peer_id: str,
    payload: PeerPartialCompletion,
    service: PeerService = Depends(peer_service),
) -> Peer:
    try:
        return service.complete_partial(peer_id, enabled=payload.enabled, step=payload.step)
    except _DOMAIN_ERRORS as exc:
        _raise_http(exc)
