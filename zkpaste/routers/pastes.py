from fastapi import APIRouter, Depends, Request, Response
from starlette.concurrency import run_in_threadpool

from zkpaste.config import settings
from zkpaste.dependencies import Services, get_services
from zkpaste.errors import ClientRejection
from zkpaste.middleware.rate_limit import limiter, write_client_key
from zkpaste.schemas.paste import (
    ErrorResponse,
    PasteCreateResponse,
    PasteRetrieveResponse,
    base64url_encode,
)

router = APIRouter()


@router.post(
    "/pastes",
    response_model=PasteCreateResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
async def create_paste(
    request: Request,
    services: Services = Depends(get_services),
):
    """
    Store an encrypted paste.

    The body is parsed by the ingestion path itself so that the write throttle
    runs before any parsing. Bodies too large to hold a valid paste are refused
    before they are read in full. The deletion token in the response is shown once.
    """
    client_key = write_client_key(request)
    max_body = services.ingestion.limits.max_body_bytes

    content_length = request.headers.get("content-length", "")
    if content_length.isdigit() and int(content_length) > max_body:
        services.ingestion.reject_oversized_body(client_key)

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_body:
            services.ingestion.reject_oversized_body(client_key)

    created = await run_in_threadpool(services.ingestion.ingest, client_key, bytes(body))
    return PasteCreateResponse(id=created.id, deletion_token=created.deletion_token)


@router.get(
    "/pastes/{paste_id}",
    response_model=PasteRetrieveResponse,
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_retrieves)
def retrieve_paste(
    request: Request,
    paste_id: str,
    services: Services = Depends(get_services),
):
    """
    Fetch a paste's ciphertext and spend one view.

    Missing, expired and used-up pastes all return the same 404.
    """
    view = services.retrieval.view(paste_id)
    return PasteRetrieveResponse(
        ciphertext=base64url_encode(view.ciphertext),
        iv=base64url_encode(view.iv),
        expire_at=view.expire_at,
        view_limit=view.view_limit,
        single_view=view.single_view,
        mime=view.mime,
        views_remaining=view.views_remaining,
    )


@router.delete(
    "/pastes/{paste_id}",
    status_code=204,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_retrieves)
def delete_paste(
    request: Request,
    paste_id: str,
    token: str | None = None,
    services: Services = Depends(get_services),
):
    """Delete a paste using the deletion token returned at creation."""
    if not token:
        raise ClientRejection("missing_token")
    services.retrieval.delete(paste_id, token)
    return Response(status_code=204)
