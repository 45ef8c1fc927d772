from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import RedirectResponse

from clickpipe_app.dependencies import get_client_details, get_link_resolver
from clickpipe_app.schemas.link import ClientDetails
from clickpipe_app.services.link_resolver import LinkResolver

router = APIRouter(tags=["redirect"])


@router.get("/{key}")
async def redirect_to_destination(
    key: str,
    pw: Optional[str] = Query(None),
    client: ClientDetails = Depends(get_client_details),
    resolver: LinkResolver = Depends(get_link_resolver),
):
    """
    Redirect to the destination URL.

    The click event is only enqueued here; the consumer persists it
    later, so the redirect never waits on analytics.
    """
    resolved = await resolver.resolve(key, password=pw, client=client)
    return RedirectResponse(url=resolved.url, status_code=status.HTTP_302_FOUND)
