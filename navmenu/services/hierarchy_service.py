"""
Hierarchy Mutation Engine - validated structural edits on menus

Every public method runs as one unit of work: the structure lock is held,
Tree Store calls only flush, and the session is committed at the end or
rolled back on any error, so a failed edit leaves the tree as it was.
"""
import logging
import re
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from navmenu.config import settings
from navmenu.exceptions import (
    CycleDetected, DepthExceeded, NodeNotFound, ValidationError,
)
from navmenu.models.menu import MenuNode, MenuTarget
from navmenu.services.resource_resolver import ResourceRegistry, ResourceResolver
from navmenu.services.tree_store import TreeStore, relative_depths
from navmenu.services.visibility import as_utc, to_storage

logger = logging.getLogger(__name__)

SLUG_RE = re.compile(r"^[a-zA-Z0-9_-]+$")

ITEM_FIELDS = (
    "name", "custom_url", "resource_type", "resource_id", "resource_slug",
    "display_at", "hide_at", "icon", "css_class", "target", "is_active",
)

# Bounds are numbered globally, so a shift in one menu moves every menu after it.
_structure_lock = threading.RLock()


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")
    return slug


class HierarchyService:
    def __init__(self, db: Session, registry: Optional[ResourceRegistry] = None):
        self.db = db
        self.store = TreeStore(db)
        self.registry = registry

    @contextmanager
    def _unit_of_work(self):
        with _structure_lock:
            # bounds loaded before the lock may have been shifted by another session
            self.db.expire_all()
            try:
                yield
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

    # ============== Reads ==============

    def list_menus(self) -> List[Tuple[MenuNode, int]]:
        return [(root, TreeStore.count_descendants(root)) for root in self.store.list_roots()]

    def get_menu(self, menu_id: int) -> MenuNode:
        return self.store.require_root(menu_id)

    def list_items(self, menu_id: int) -> List[Tuple[MenuNode, int]]:
        """Every item of the menu in pre-order with its depth (children of the root = 1)"""
        root = self.store.require_root(menu_id)
        items = self.store.descendants(root)
        depths = relative_depths(root, items)
        return [(item, depths[item.id]) for item in items]

    def get_item(self, item_id: int) -> MenuNode:
        node = self.store.require_node(item_id)
        if node.is_root:
            raise NodeNotFound(item_id)
        return node

    def resource_names(self, nodes: Iterable[MenuNode]) -> Dict[int, Optional[str]]:
        """Display name of each linked record, one lookup per resource type"""
        if self.registry is None:
            return {}
        resolver = ResourceResolver(self.db, self.registry)
        by_type: Dict[str, List[MenuNode]] = {}
        for node in nodes:
            if node.resource_type in self.registry and node.resource_id is not None:
                by_type.setdefault(node.resource_type, []).append(node)

        names = {}
        for resource_type, linked in by_type.items():
            records = resolver.get_resources(resource_type, [n.resource_id for n in linked])
            for node in linked:
                record = records.get(node.resource_id)
                names[node.id] = record.name if record is not None else None
        return names

    # ============== Validation ==============

    def _validate_menu(self, values: Dict[str, Any], menu_id: Optional[int] = None) -> None:
        errors = {}
        name = (values.get("name") or "").strip()
        if len(name) < 3:
            errors["name"] = "The name must be at least 3 characters."
        elif len(name) > 255:
            errors["name"] = "The name may not be greater than 255 characters."

        slug = values.get("slug") or ""
        if not SLUG_RE.match(slug):
            errors["slug"] = "The slug may only contain letters, numbers, dashes and underscores."
        else:
            existing = self.store.find_roots_by_slugs([slug]).get(slug)
            if existing is not None and existing.id != menu_id:
                errors["slug"] = "The slug has already been taken."

        max_depth = values.get("max_depth")
        if not isinstance(max_depth, int) or not 1 <= max_depth <= settings.MAX_DEPTH_LIMIT:
            errors["max_depth"] = f"The max depth must be between 1 and {settings.MAX_DEPTH_LIMIT}."

        if errors:
            raise ValidationError(errors)

    def _validate_item(self, values: Dict[str, Any]) -> None:
        errors = {}
        if not (values.get("name") or "").strip():
            errors["name"] = "The name field is required."

        display_at = as_utc(values.get("display_at"))
        hide_at = as_utc(values.get("hide_at"))
        if display_at is not None and hide_at is not None and hide_at <= display_at:
            errors["hide_at"] = "The hide at must be a date after display at."

        resource_type = values.get("resource_type")
        resource_id = values.get("resource_id")
        if resource_type and resource_id is None:
            errors["resource_id"] = "The resource id is required when resource type is present."
        elif resource_id is not None and not resource_type:
            errors["resource_type"] = "The resource type is required when resource id is present."
        elif values.get("resource_slug") and not resource_type:
            errors["resource_type"] = "The resource type is required when resource slug is present."
        elif resource_type and self.registry is not None and resource_type not in self.registry:
            errors["resource_type"] = f"Resource type '{resource_type}' is not configured."

        target = values.get("target")
        if target is not None:
            try:
                MenuTarget(target)
            except ValueError:
                errors["target"] = "The target must be _self or _blank."

        if errors:
            raise ValidationError(errors)

    @staticmethod
    def _item_values(node: Optional[MenuNode]) -> Dict[str, Any]:
        if node is None:
            return {}
        return {f: getattr(node, f) for f in ITEM_FIELDS}

    @staticmethod
    def _apply_item_fields(node: MenuNode, data: Dict[str, Any]) -> None:
        for key in ITEM_FIELDS:
            if key not in data:
                continue
            value = data[key]
            if key in ("display_at", "hide_at"):
                value = to_storage(value)
            elif key == "target":
                value = MenuTarget(value) if value is not None else MenuTarget.SELF
            elif key == "name":
                value = value.strip()
            elif key == "is_active" and value is None:
                value = True
            setattr(node, key, value)

    def _menu_of(self, node: MenuNode) -> MenuNode:
        root = self.store.get_menu_root(node)
        if root is None:
            raise NodeNotFound(node.id)
        return root

    # ============== Menus ==============

    @contextmanager
    def _unique_slug(self):
        """A concurrent writer may take the slug between validation and flush"""
        try:
            yield
        except IntegrityError as e:
            raise ValidationError.single("slug", "The slug has already been taken.") from e

    def create_menu(self, data: Dict[str, Any]) -> MenuNode:
        values = {
            "name": (data.get("name") or "").strip(),
            "slug": data.get("slug") or slugify(data.get("name") or ""),
            "max_depth": data.get("max_depth") or settings.DEFAULT_MAX_DEPTH,
        }
        with self._unit_of_work():
            self._validate_menu(values)
            root = MenuNode(
                name=values["name"],
                slug=values["slug"],
                max_depth=values["max_depth"],
                is_active=data.get("is_active") is not False,
            )
            with self._unique_slug():
                self.store.create_root(root)
        self.db.refresh(root)
        logger.info(f"Menu created: {root.slug} (id={root.id})")
        return root

    def update_menu(self, menu_id: int, data: Dict[str, Any]) -> MenuNode:
        with self._unit_of_work():
            root = self.store.require_root(menu_id)
            values = {
                "name": (data["name"] or "").strip() if "name" in data else root.name,
                "slug": data.get("slug") or root.slug,
                "max_depth": data.get("max_depth") or root.max_depth,
            }
            self._validate_menu(values, menu_id=root.id)
            if values["max_depth"] < root.max_depth:
                height = self.store.subtree_height(root)
                if height > values["max_depth"]:
                    raise ValidationError.single(
                        "max_depth", f"Existing items are nested {height} levels deep."
                    )
            root.name = values["name"]
            root.slug = values["slug"]
            root.max_depth = values["max_depth"]
            if data.get("is_active") is not None:
                root.is_active = data["is_active"]
            with self._unique_slug():
                self.db.flush()
        self.db.refresh(root)
        return root

    def delete_menu(self, menu_id: int) -> int:
        with self._unit_of_work():
            root = self.store.require_root(menu_id)
            slug = root.slug
            removed = self.store.remove(root.id)
        logger.info(f"Menu deleted: {slug} ({removed} nodes)")
        return removed

    # ============== Items ==============

    def create_item(self, menu_id: int, data: Dict[str, Any]) -> MenuNode:
        with self._unit_of_work():
            root = self.store.require_root(menu_id)
            parent_id = data.get("parent_id") or root.id
            parent = self.store.require_node(parent_id, "Parent")
            if not root.contains(parent):
                raise ValidationError.single("parent_id", "The parent item does not belong to this menu.")
            self._validate_item(data)

            node = MenuNode()
            self._apply_item_fields(node, data)
            self.store.insert(node, parent.id, data.get("position"))
        self.db.refresh(node)
        return node

    def update_item(self, item_id: int, data: Dict[str, Any]) -> MenuNode:
        with self._unit_of_work():
            node = self.get_item(item_id)
            values = self._item_values(node)
            values.update({k: v for k, v in data.items() if k in ITEM_FIELDS})
            self._validate_item(values)

            if "parent_id" in data and data["parent_id"] == node.id:
                raise ValidationError.single("parent_id", "An item cannot be its own parent.")
            new_parent_id = data["parent_id"] if "parent_id" in data else node.parent_id
            if new_parent_id is None:
                new_parent_id = self._menu_of(node).id
            position = data.get("position")
            if new_parent_id != node.parent_id or (position is not None and position != node.position):
                self.store.move(node.id, new_parent_id, position)
                node = self.store.require_node(item_id)

            self._apply_item_fields(node, data)
        self.db.refresh(node)
        return node

    def move_item(self, item_id: int, parent_id: Optional[int] = None,
                  position: Optional[int] = None) -> MenuNode:
        """Reparent ``item_id``; ``parent_id`` None means the root of the item's own menu"""
        with self._unit_of_work():
            node = self.get_item(item_id)
            if parent_id == node.id:
                raise ValidationError.single("parent_id", "An item cannot be its own parent.")
            if parent_id is None:
                parent_id = self._menu_of(node).id
            self.store.move(node.id, parent_id, position)
            node = self.store.require_node(item_id)
        self.db.refresh(node)
        return node

    def delete_item(self, item_id: int) -> int:
        with self._unit_of_work():
            self.get_item(item_id)
            removed = self.store.remove(item_id)
        return removed

    def reorder_children(self, parent_id: int, ordered_ids: Sequence[int]) -> None:
        with self._unit_of_work():
            self.store.reorder(parent_id, ordered_ids)

    # ============== Bulk structure ==============

    @staticmethod
    def _check_assignments(root: MenuNode, parent_of: Dict[int, int]) -> None:
        """Every parent chain must end at the root within max_depth"""
        depths: Dict[int, int] = {}
        for item_id in parent_of:
            chain = []
            current = item_id
            while current != root.id and current not in depths:
                if current in chain:
                    raise CycleDetected(item_id, parent_of[item_id])
                chain.append(current)
                current = parent_of[current]
            depth = depths.get(current, 0)
            for node_id in reversed(chain):
                depth += 1
                depths[node_id] = depth
                if depth > root.max_depth:
                    raise DepthExceeded(root.max_depth, depth)

    def restructure(self, menu_id: int, assignments: Sequence[Dict[str, Any]]) -> None:
        """
        Apply flat ``{id, parent_id, position}`` assignments in one pass.

        Items not mentioned keep their parent and position. A ``parent_id``
        of None places the item directly under the menu root.
        """
        with self._unit_of_work():
            root = self.store.require_root(menu_id)
            items = self.store.descendants(root)
            by_id = {item.id: item for item in items}
            parent_of = {item.id: item.parent_id for item in items}
            position_of = {item.id: item.position for item in items}

            errors = {}
            for index, entry in enumerate(assignments):
                item_id = entry.get("id")
                parent_id = entry.get("parent_id") or root.id
                if item_id not in by_id:
                    errors[f"items.{index}.id"] = f"Item {item_id} does not belong to this menu."
                    continue
                if parent_id == item_id:
                    errors[f"items.{index}.parent_id"] = "An item cannot be its own parent."
                elif parent_id != root.id and parent_id not in by_id:
                    errors[f"items.{index}.parent_id"] = f"Parent {parent_id} does not belong to this menu."
                parent_of[item_id] = parent_id
                if entry.get("position") is not None:
                    position_of[item_id] = entry["position"]
            if errors:
                raise ValidationError(errors)

            # unmentioned siblings keep their current relative order
            children_map: Dict[int, List[MenuNode]] = {}
            for item in items:
                children_map.setdefault(parent_of[item.id], []).append(item)
            for kids in children_map.values():
                kids.sort(key=lambda n: (position_of[n.id], n.lft))

            self._check_assignments(root, parent_of)
            self.store.relayout(root, children_map)
        logger.info(f"Menu {menu_id} restructured ({len(assignments)} assignments)")

    def rebuild(self, menu_id: int, structure: Sequence[Dict[str, Any]]) -> MenuNode:
        """
        Replace the menu's item set with a nested structure.

        Entries carrying an ``id`` update that item, entries without one are
        created, and items of the menu that are not mentioned are deleted.
        Bounds of the whole menu are recomputed once at the end.
        """
        with self._unit_of_work():
            root = self.store.require_root(menu_id)
            existing = {item.id: item for item in self.store.descendants(root)}
            children_map: Dict[int, List[MenuNode]] = {}
            kept = set()
            errors = {}

            def walk(entries, parent: MenuNode, depth: int, path: str):
                for index, entry in enumerate(entries or []):
                    where = f"{path}.{index}"
                    if depth > root.max_depth:
                        raise DepthExceeded(root.max_depth, depth)
                    item_id = entry.get("id")
                    if item_id is not None:
                        node = existing.get(item_id)
                        if node is None:
                            errors[f"{where}.id"] = f"Item {item_id} does not belong to this menu."
                            continue
                        if item_id in kept:
                            errors[f"{where}.id"] = f"Item {item_id} appears more than once."
                            continue
                        kept.add(item_id)
                        values = self._item_values(node)
                    else:
                        node = MenuNode(lft=0, rgt=0)
                        values = {}
                    values.update({k: v for k, v in entry.items() if k in ITEM_FIELDS})
                    try:
                        self._validate_item(values)
                    except ValidationError as e:
                        errors.update({f"{where}.{k}": v for k, v in e.errors.items()})
                        continue
                    self._apply_item_fields(node, entry)
                    if item_id is None:
                        node.parent_id = parent.id
                        self.db.add(node)
                        self.db.flush()
                    children_map.setdefault(parent.id, []).append(node)
                    walk(entry.get("children"), node, depth + 1, f"{where}.children")

            walk(structure, root, 1, "menu_structure")
            if errors:
                raise ValidationError(errors)

            self.store.relayout(root, children_map)
            stale = [item_id for item_id in existing if item_id not in kept]
            if stale:
                self.db.query(MenuNode).filter(MenuNode.id.in_(stale)).delete(synchronize_session="fetch")
                self.db.flush()
        self.db.refresh(root)
        logger.info(f"Menu {root.slug} rebuilt: {len(kept)} kept, {len(stale)} removed")
        return root
