"""
Admin menu API
Menus (roots), menu items and the resource lookups used by the editor
"""
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from navmenu.database import get_db
from navmenu.models.menu import MenuNode
from navmenu.models.schemas import (
    MenuCreate, MenuUpdate, MenuResponse,
    MenuItemCreate, MenuItemUpdate, MenuItemMove, MenuItemResponse,
    ReorderRequest, RebuildRequest,
    ResourceTypeResponse, ResourceSearchResult,
)
from navmenu.models.user import AdminUser
from navmenu.routers.errors import http_error
from navmenu.security.auth import get_current_user
from navmenu.services.hierarchy_service import HierarchyService
from navmenu.services.resource_resolver import (
    ResourceRegistry, ResourceResolver, get_resource_registry,
)
from navmenu.services.visibility import as_utc

menu_router = APIRouter(prefix="/menus", tags=["Menus"])
item_router = APIRouter(prefix="/menu-items", tags=["Menu items"])
resource_router = APIRouter(tags=["Resources"])


def _menu_response(root: MenuNode, items_count: int) -> MenuResponse:
    resp = MenuResponse.model_validate(root)
    resp.items_count = items_count
    return resp


def _item_response(node: MenuNode, menu_id: Optional[int] = None, depth: Optional[int] = None,
                   resource_name: Optional[str] = None) -> MenuItemResponse:
    resp = MenuItemResponse.model_validate(node)
    resp.menu_id = menu_id
    resp.depth = depth
    resp.resource_name = resource_name
    resp.display_at = as_utc(node.display_at)
    resp.hide_at = as_utc(node.hide_at)
    return resp


def _menu_items(service: HierarchyService, menu_id: int, nested: bool) -> List[MenuItemResponse]:
    rows = service.list_items(menu_id)
    names = service.resource_names(node for node, _ in rows)
    responses: Dict[int, MenuItemResponse] = {}
    result = []
    for node, depth in rows:
        resp = _item_response(node, menu_id, depth, names.get(node.id))
        responses[node.id] = resp
        if nested and node.parent_id in responses:
            responses[node.parent_id].children.append(resp)
        else:
            result.append(resp)
    return result


# ---- Menus ----

@menu_router.get("", response_model=List[MenuResponse])
def list_menus(
    db: Session = Depends(get_db),
    current_user: AdminUser = Depends(get_current_user),
):
    service = HierarchyService(db)
    return [_menu_response(root, count) for root, count in service.list_menus()]


@menu_router.post("", response_model=MenuResponse, status_code=status.HTTP_201_CREATED)
def create_menu(
    data: MenuCreate,
    db: Session = Depends(get_db),
    current_user: AdminUser = Depends(get_current_user),
):
    service = HierarchyService(db)
    try:
        root = service.create_menu(data.model_dump())
    except ValueError as e:
        raise http_error(e)
    return _menu_response(root, 0)


@menu_router.get("/{menu_id}", response_model=MenuResponse)
def get_menu(
    menu_id: int,
    db: Session = Depends(get_db),
    current_user: AdminUser = Depends(get_current_user),
):
    service = HierarchyService(db)
    try:
        root = service.get_menu(menu_id)
    except ValueError as e:
        raise http_error(e)
    return _menu_response(root, service.store.count_descendants(root))


@menu_router.put("/{menu_id}", response_model=MenuResponse)
def update_menu(
    menu_id: int,
    data: MenuUpdate,
    db: Session = Depends(get_db),
    current_user: AdminUser = Depends(get_current_user),
):
    service = HierarchyService(db)
    try:
        root = service.update_menu(menu_id, data.model_dump(exclude_unset=True))
    except ValueError as e:
        raise http_error(e)
    return _menu_response(root, service.store.count_descendants(root))


@menu_router.delete("/{menu_id}")
def delete_menu(
    menu_id: int,
    db: Session = Depends(get_db),
    current_user: AdminUser = Depends(get_current_user),
):
    service = HierarchyService(db)
    try:
        removed = service.delete_menu(menu_id)
    except ValueError as e:
        raise http_error(e)
    return {"message": "Menu deleted successfully", "deleted_nodes": removed}


@menu_router.get("/{menu_id}/items", response_model=List[MenuItemResponse])
def list_menu_items(
    menu_id: int,
    nested: bool = True,
    db: Session = Depends(get_db),
    registry: ResourceRegistry = Depends(get_resource_registry),
    current_user: AdminUser = Depends(get_current_user),
):
    """Items in tree order; flat when nested=false"""
    service = HierarchyService(db, registry)
    try:
        return _menu_items(service, menu_id, nested)
    except ValueError as e:
        raise http_error(e)


@menu_router.put("/{menu_id}/items/rebuild", response_model=List[MenuItemResponse])
def rebuild_menu_items(
    menu_id: int,
    data: RebuildRequest,
    db: Session = Depends(get_db),
    registry: ResourceRegistry = Depends(get_resource_registry),
    current_user: AdminUser = Depends(get_current_user),
):
    """Replace the whole item tree of a menu"""
    service = HierarchyService(db, registry)
    structure = [entry.model_dump(exclude_unset=True) for entry in data.menu_structure]
    try:
        service.rebuild(menu_id, structure)
        return _menu_items(service, menu_id, nested=True)
    except ValueError as e:
        raise http_error(e)


@menu_router.put("/{menu_id}/items/reorder")
def reorder_menu_items(
    menu_id: int,
    data: ReorderRequest,
    db: Session = Depends(get_db),
    current_user: AdminUser = Depends(get_current_user),
):
    """Drag-and-drop result: flat {id, parent_id, position} list"""
    service = HierarchyService(db)
    try:
        service.restructure(menu_id, [entry.model_dump() for entry in data.items])
    except ValueError as e:
        raise http_error(e)
    return {"message": "Menu items reordered successfully"}


# ---- Menu items ----

@item_router.post("", response_model=MenuItemResponse, status_code=status.HTTP_201_CREATED)
def create_menu_item(
    data: MenuItemCreate,
    db: Session = Depends(get_db),
    registry: ResourceRegistry = Depends(get_resource_registry),
    current_user: AdminUser = Depends(get_current_user),
):
    service = HierarchyService(db, registry)
    payload = data.model_dump(exclude={"menu_id"})
    try:
        node = service.create_item(data.menu_id, payload)
    except ValueError as e:
        raise http_error(e)
    return _item_response(node, data.menu_id, service.store.depth_of(node))


@item_router.put("/{item_id}", response_model=MenuItemResponse)
def update_menu_item(
    item_id: int,
    data: MenuItemUpdate,
    db: Session = Depends(get_db),
    registry: ResourceRegistry = Depends(get_resource_registry),
    current_user: AdminUser = Depends(get_current_user),
):
    service = HierarchyService(db, registry)
    try:
        node = service.update_item(item_id, data.model_dump(exclude_unset=True))
    except ValueError as e:
        raise http_error(e)
    root = service.store.get_menu_root(node)
    return _item_response(node, root.id if root else None, service.store.depth_of(node))


@item_router.post("/{item_id}/move", response_model=MenuItemResponse)
def move_menu_item(
    item_id: int,
    data: MenuItemMove,
    db: Session = Depends(get_db),
    current_user: AdminUser = Depends(get_current_user),
):
    service = HierarchyService(db)
    try:
        node = service.move_item(item_id, data.parent_id, data.position)
    except ValueError as e:
        raise http_error(e)
    root = service.store.get_menu_root(node)
    return _item_response(node, root.id if root else None, service.store.depth_of(node))


@item_router.delete("/{item_id}")
def delete_menu_item(
    item_id: int,
    db: Session = Depends(get_db),
    current_user: AdminUser = Depends(get_current_user),
):
    service = HierarchyService(db)
    try:
        removed = service.delete_item(item_id)
    except ValueError as e:
        raise http_error(e)
    return {"message": "Menu item deleted successfully", "deleted_nodes": removed}


# ---- Resources ----

@resource_router.get("/resource-types", response_model=List[ResourceTypeResponse])
def list_resource_types(
    registry: ResourceRegistry = Depends(get_resource_registry),
    current_user: AdminUser = Depends(get_current_user),
):
    return [
        ResourceTypeResponse(
            name=t.name,
            route_pattern=t.route_pattern,
            supports_soft_delete=t.supports_soft_delete,
        )
        for t in registry.types()
    ]


@resource_router.get("/resources/{resource_type}/search", response_model=List[ResourceSearchResult])
def search_resources(
    resource_type: str,
    q: str = "",
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
    registry: ResourceRegistry = Depends(get_resource_registry),
    current_user: AdminUser = Depends(get_current_user),
):
    """Name search, soft-deleted records excluded"""
    resolver = ResourceResolver(db, registry)
    try:
        records = resolver.search_resources(resource_type, q, limit)
    except ValueError as e:
        raise http_error(e)
    return [ResourceSearchResult(**r.to_dict(include_deleted=False)) for r in records]
