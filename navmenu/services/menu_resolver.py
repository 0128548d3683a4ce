"""
Menu Resolution Engine

Turns a menu slug into the tree a frontend renders:

    root = find_root_by_slug(slug)
    nodes = descendants(root)                 # one query, lft order
    nodes = [n for n in nodes if visible(n)]  # one captured instant
    urls  = custom_url or resource route      # failures degrade to None
    tree  = reassemble(root, nodes)           # orphans are dropped

Resolution of one slug is all-or-nothing: either a complete tree is
returned or an error is raised. In multi-menu mode each slug fails on its
own without affecting the others.
"""
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Union

from sqlalchemy.orm import Session

from navmenu.exceptions import MenuError, MenuNotFound, ResolutionTimeout
from navmenu.models.menu import MenuNode
from navmenu.services.resource_resolver import ResourceRegistry, ResourceResolver
from navmenu.services.tree_store import TreeStore
from navmenu.services.visibility import as_utc, filter_visible, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ResolvedMenuItem:
    id: int
    name: str
    url: Optional[str]
    target: str
    css_class: Optional[str]
    icon: Optional[str]
    children: List["ResolvedMenuItem"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "target": self.target,
            "css_class": self.css_class,
            "icon": self.icon,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class MenuTree:
    slug: str
    name: str
    items: List[ResolvedMenuItem]
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "name": self.name,
            "items": [item.to_dict() for item in self.items],
            "timestamp": self.timestamp.isoformat(),
        }


class _Deadline:
    def __init__(self, slug: str, timeout_ms: Optional[float], clock: Callable[[], float]):
        self.slug = slug
        self.timeout_ms = timeout_ms
        self.clock = clock
        self._expires = clock() + timeout_ms / 1000 if timeout_ms else None

    def check(self) -> None:
        if self._expires is not None and self.clock() > self._expires:
            raise ResolutionTimeout(self.slug, self.timeout_ms)


class MenuResolver:
    """Read path: slug -> filtered, URL-resolved, nested tree"""

    def __init__(self, db: Session, registry: ResourceRegistry,
                 timeout_ms: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.db = db
        self.store = TreeStore(db)
        self.resources = ResourceResolver(db, registry)
        self.registry = registry
        self.timeout_ms = timeout_ms
        self.clock = clock

    def resolve_menu(self, slug: str, at_time: Optional[datetime] = None) -> MenuTree:
        """
        Resolve one menu.

        Raises:
            MenuNotFound: no root carries ``slug``
            ResolutionTimeout: the deadline passed before the tree was complete
        """
        at_time = as_utc(at_time) if at_time is not None else utc_now()
        deadline = _Deadline(slug, self.timeout_ms, self.clock)

        root = self.store.find_root_by_slug(slug)
        nodes = self.store.descendants(root)
        deadline.check()

        visible = filter_visible(nodes, at_time)
        hidden = self._unavailable_resource_nodes(visible)
        if hidden:
            visible = [n for n in visible if n.id not in hidden]
        deadline.check()

        items = self._reassemble(root, visible, deadline)
        return MenuTree(slug=root.slug, name=root.name, items=items, timestamp=at_time)

    def resolve_menus(self, slugs: Sequence[str],
                      at_time: Optional[datetime] = None) -> Dict[str, Union[MenuTree, Dict[str, str]]]:
        """Resolve several menus against one instant; failures are reported per slug"""
        at_time = as_utc(at_time) if at_time is not None else utc_now()
        results: Dict[str, Union[MenuTree, Dict[str, str]]] = {}
        for slug in normalize_slugs(slugs):
            try:
                results[slug] = self.resolve_menu(slug, at_time)
            except MenuNotFound as e:
                results[slug] = {"error": "Menu not found", "message": e.message}
            except ResolutionTimeout as e:
                logger.warning(f"Menu '{slug}' resolution timed out: {e}")
                results[slug] = {"error": "Menu resolution timed out", "message": e.message}
        return results

    # ============== URL resolution ==============

    def resolve_url(self, node: MenuNode) -> Optional[str]:
        """custom_url verbatim, else the resource route, else None"""
        if node.custom_url:
            return node.custom_url
        if not (node.resource_type and node.resource_slug):
            return None
        try:
            return self.resources.resolve_url(node.resource_type, node.resource_slug)
        except MenuError as e:
            logger.warning(
                f"Failed to generate URL for menu item {node.id} "
                f"({node.resource_type}:{node.resource_slug}): {e}"
            )
            return None

    def _unavailable_resource_nodes(self, nodes: List[MenuNode]) -> Set[int]:
        """Ids of nodes linking to a missing or soft-deleted record without a custom_url to fall back on"""
        by_type: Dict[str, List[MenuNode]] = defaultdict(list)
        for node in nodes:
            if node.resource_type and node.resource_id is not None and not node.custom_url:
                by_type[node.resource_type].append(node)

        hidden: Set[int] = set()
        for resource_type, linked in by_type.items():
            if resource_type not in self.registry:
                continue
            try:
                records = self.resources.get_resources(resource_type, [n.resource_id for n in linked])
            except MenuError as e:
                logger.warning(f"Resource lookup for type '{resource_type}' failed: {e}")
                continue
            for node in linked:
                record = records.get(node.resource_id)
                if record is None or record.is_deleted:
                    hidden.add(node.id)
        return hidden

    # ============== Reassembly ==============

    def _reassemble(self, root: MenuNode, nodes: List[MenuNode],
                    deadline: _Deadline) -> List[ResolvedMenuItem]:
        """Nest ``nodes`` (lft order) under ``root``; a node whose parent is absent is dropped"""
        resolved: Dict[int, ResolvedMenuItem] = {}
        top_level: List[ResolvedMenuItem] = []
        for node in nodes:
            if node.parent_id == root.id:
                siblings = top_level
            elif node.parent_id in resolved:
                siblings = resolved[node.parent_id].children
            else:
                continue
            item = ResolvedMenuItem(
                id=node.id,
                name=node.name,
                url=self.resolve_url(node),
                target=node.target.value if node.target is not None else "_self",
                css_class=node.css_class,
                icon=node.icon,
            )
            resolved[node.id] = item
            siblings.append(item)
        deadline.check()
        return top_level


def normalize_slugs(slugs) -> List[str]:
    """Split a comma list if needed, strip blanks, keep first occurrence order"""
    if isinstance(slugs, str):
        slugs = slugs.split(",")
    seen = []
    for slug in slugs:
        slug = (slug or "").strip()
        if slug and slug not in seen:
            seen.append(slug)
    return seen
