import secrets

from fastapi import APIRouter, Header, HTTPException, Request, Response

from app.settings import settings

router = APIRouter()


def _authorize(app_settings, authorization: str | None) -> None:
    token = getattr(app_settings, "metrics_token", None)
    if not token:
        return
    expected = f"Bearer {token}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/metrics")
async def metrics_endpoint(
    request: Request,
    authorization: str | None = Header(default=None),
) -> Response:
    metrics_client = getattr(request.app.state, "metrics", None)
    if metrics_client is None or not metrics_client.enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")

    _authorize(getattr(request.app.state, "app_settings", settings), authorization)
    payload, content_type = metrics_client.render()
    return Response(content=payload, media_type=content_type)
