from fastapi import HTTPException, Request, status

from wgdash.core.service import PeerService


def peer_service(request: Request) -> PeerService:
    service = getattr(request.app.state, "peer_service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Peer service is not ready")
    return service
