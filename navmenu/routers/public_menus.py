"""
Public menu API (no auth, rate limited)
Prefix: /api/menus
"""
import re
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from navmenu.config import settings
from navmenu.database import get_db
from navmenu.exceptions import MenuNotFound, ResolutionTimeout
from navmenu.models.schemas import MultiMenuResponse, PublicMenuResponse
from navmenu.security.rate_limit import enforce_public_rate_limit
from navmenu.services.menu_resolver import MenuResolver, MenuTree, normalize_slugs
from navmenu.services.resource_resolver import ResourceRegistry, get_resource_registry
from navmenu.services.visibility import utc_now

router = APIRouter(
    prefix="/api/menus",
    tags=["Public menus"],
    dependencies=[Depends(enforce_public_rate_limit)],
)

SLUG_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message})


@router.get("", response_model=MultiMenuResponse)
def get_menus(
    menus: Optional[str] = None,
    db: Session = Depends(get_db),
    registry: ResourceRegistry = Depends(get_resource_registry),
):
    """Several menus at once: ?menus=main,footer"""
    slugs = normalize_slugs(menus or "")
    if not slugs:
        return _error(
            status.HTTP_400_BAD_REQUEST,
            "No menus specified",
            "Please provide comma-separated menu slugs via ?menus=slug1,slug2",
        )

    at_time = utc_now()
    resolver = MenuResolver(db, registry, timeout_ms=settings.RESOLUTION_TIMEOUT_MS)
    result = {}
    for slug, resolved in resolver.resolve_menus(slugs, at_time).items():
        if isinstance(resolved, MenuTree):
            result[slug] = {
                "name": resolved.name,
                "items": [item.to_dict() for item in resolved.items],
            }
        else:
            result[slug] = resolved
    return {"menus": result, "timestamp": at_time.isoformat()}


@router.get("/{slug}", response_model=PublicMenuResponse)
def get_menu(
    slug: str,
    db: Session = Depends(get_db),
    registry: ResourceRegistry = Depends(get_resource_registry),
):
    """One menu as a nested, visibility-filtered tree"""
    if not SLUG_RE.match(slug):
        return _error(status.HTTP_404_NOT_FOUND, "Menu not found", MenuNotFound(slug).message)

    resolver = MenuResolver(db, registry, timeout_ms=settings.RESOLUTION_TIMEOUT_MS)
    try:
        return resolver.resolve_menu(slug, utc_now()).to_dict()
    except MenuNotFound as e:
        return _error(status.HTTP_404_NOT_FOUND, "Menu not found", e.message)
    except ResolutionTimeout as e:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Menu resolution timed out", e.message)
