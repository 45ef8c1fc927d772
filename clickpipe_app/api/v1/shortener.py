from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from clickpipe_app.dependencies import (
    get_caller,
    get_client_details,
    get_link_resolver,
    get_link_service,
)
from clickpipe_app.schemas.link import (
    CallerIdentity,
    ClientDetails,
    CreateLinkRequest,
    KeyResponse,
    KeysResponse,
    ResolvedLink,
)
from clickpipe_app.services.link_resolver import LinkResolver
from clickpipe_app.services.link_service import LinkService

router = APIRouter(prefix="/shortener", tags=["shortener"])


@router.get("/random", response_model=str)
def random_key(link_service: LinkService = Depends(get_link_service)):
    """Return a random key that is currently available"""
    return link_service.allocator.allocate()


@router.get("/{key}", response_model=ResolvedLink)
async def resolve_key(
    key: str,
    pw: Optional[str] = Query(None, description="Password for protected links"),
    client: ClientDetails = Depends(get_client_details),
    resolver: LinkResolver = Depends(get_link_resolver),
):
    """Resolve a key to its destination; the click is recorded in the background"""
    return await resolver.resolve(key, password=pw, client=client)


@router.post("", response_model=KeyResponse, status_code=status.HTTP_201_CREATED)
def create_link(
    request: CreateLinkRequest,
    caller: CallerIdentity = Depends(get_caller),
    link_service: LinkService = Depends(get_link_service),
):
    link = link_service.create_link(request, caller)
    return KeyResponse(key=link.key)


@router.post("/bulk", response_model=KeysResponse, status_code=status.HTTP_201_CREATED)
def bulk_create_links(
    requests: List[CreateLinkRequest],
    caller: CallerIdentity = Depends(get_caller),
    link_service: LinkService = Depends(get_link_service),
):
    links = link_service.bulk_create(requests, caller)
    return KeysResponse(keys=[link.key for link in links])


@router.delete("/{key}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_link(
    key: str,
    caller: CallerIdentity = Depends(get_caller),
    link_service: LinkService = Depends(get_link_service),
):
    await link_service.delete_link(key, caller)
