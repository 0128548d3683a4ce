"""
Tree Store - nested-set persistence for menu nodes

All menus share one global numbering: every menu root owns an interval
``[lft, rgt]`` and the intervals of different menus never overlap. A node B
is a descendant of A iff ``A.lft < B.lft and B.rgt < A.rgt``.

Structural methods only flush; the caller owns the transaction
(see HierarchyService) so a failed mutation can be rolled back as a whole.
Every method validates before it touches a bound, so a raised error leaves
the session unchanged.
"""
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from navmenu.exceptions import (
    CycleDetected, DepthExceeded, InvalidChildSet, MenuNotFound, NodeNotFound, ValidationError,
)
from navmenu.models.menu import MenuNode

logger = logging.getLogger(__name__)


def relative_depths(base: MenuNode, nodes: Iterable[MenuNode]) -> Dict[int, int]:
    """Depth of each node below ``base`` (children of base = 1).

    ``nodes`` must be base's descendants in ``lft`` order, as returned by
    ``TreeStore.descendants``.
    """
    depths = {}
    stack = [base]
    for node in nodes:
        while stack and stack[-1].rgt < node.lft:
            stack.pop()
        depths[node.id] = len(stack)
        stack.append(node)
    return depths


class TreeStore:
    """Nested-set operations on the menu_nodes table"""

    def __init__(self, db: Session):
        self.db = db

    # ============== Reads ==============

    def get_node(self, node_id: int) -> Optional[MenuNode]:
        return self.db.query(MenuNode).filter(MenuNode.id == node_id).first()

    def require_node(self, node_id: int, what: str = "Menu item") -> MenuNode:
        node = self.get_node(node_id)
        if node is None:
            raise NodeNotFound(node_id, what)
        return node

    def require_root(self, root_id: int) -> MenuNode:
        root = (
            self.db.query(MenuNode)
            .filter(MenuNode.id == root_id, MenuNode.is_root == True)  # noqa: E712
            .first()
        )
        if root is None:
            raise NodeNotFound(root_id, "Menu")
        return root

    def find_root_by_slug(self, slug: str) -> MenuNode:
        root = (
            self.db.query(MenuNode)
            .filter(MenuNode.slug == slug, MenuNode.is_root == True)  # noqa: E712
            .first()
        )
        if root is None:
            raise MenuNotFound(slug)
        return root

    def find_roots_by_slugs(self, slugs: Sequence[str]) -> Dict[str, MenuNode]:
        if not slugs:
            return {}
        roots = (
            self.db.query(MenuNode)
            .filter(MenuNode.slug.in_(list(slugs)), MenuNode.is_root == True)  # noqa: E712
            .all()
        )
        return {root.slug: root for root in roots}

    def list_roots(self) -> List[MenuNode]:
        return (
            self.db.query(MenuNode)
            .filter(MenuNode.is_root == True)  # noqa: E712
            .order_by(MenuNode.lft)
            .all()
        )

    def descendants(self, node: MenuNode) -> List[MenuNode]:
        """All descendants of ``node`` in pre-order, one query"""
        return (
            self.db.query(MenuNode)
            .filter(MenuNode.lft > node.lft, MenuNode.rgt < node.rgt)
            .order_by(MenuNode.lft)
            .all()
        )

    def fetch_subtree(self, root_id: int) -> List[MenuNode]:
        root = self.require_node(root_id, "Menu")
        return self.descendants(root)

    def children_of(self, parent_id: int) -> List[MenuNode]:
        return (
            self.db.query(MenuNode)
            .filter(MenuNode.parent_id == parent_id)
            .order_by(MenuNode.position, MenuNode.lft)
            .all()
        )

    def get_menu_root(self, node: MenuNode) -> Optional[MenuNode]:
        if node.is_root:
            return node
        return (
            self.db.query(MenuNode)
            .filter(
                MenuNode.is_root == True,  # noqa: E712
                MenuNode.lft < node.lft,
                MenuNode.rgt > node.rgt,
            )
            .first()
        )

    def depth_of(self, node: MenuNode) -> int:
        """Distance from the menu root (root = 0)"""
        return (
            self.db.query(func.count(MenuNode.id))
            .filter(MenuNode.lft < node.lft, MenuNode.rgt > node.rgt)
            .scalar()
        )

    def subtree_height(self, node: MenuNode) -> int:
        """Levels below ``node``; 0 for a leaf"""
        if node.rgt - node.lft == 1:
            return 0
        depths = relative_depths(node, self.descendants(node))
        return max(depths.values(), default=0)

    @staticmethod
    def count_descendants(node: MenuNode) -> int:
        return (node.rgt - node.lft - 1) // 2

    # ============== Bound maintenance ==============

    def _shift_bounds(self, threshold: int, delta: int) -> None:
        """Add ``delta`` to every bound >= threshold"""
        self.db.query(MenuNode).filter(MenuNode.lft >= threshold).update(
            {MenuNode.lft: MenuNode.lft + delta}, synchronize_session=False
        )
        self.db.query(MenuNode).filter(MenuNode.rgt >= threshold).update(
            {MenuNode.rgt: MenuNode.rgt + delta}, synchronize_session=False
        )

    def _gap_for(self, parent: MenuNode, siblings: List[MenuNode], position: int) -> int:
        """lft value a new child at ``position`` must take"""
        if position < len(siblings):
            return siblings[position].lft
        return parent.rgt

    @staticmethod
    def _clamp_position(position: Optional[int], count: int) -> int:
        if position is None or position > count:
            return count
        if position < 0:
            raise ValidationError.single("position", "Position must be zero or greater")
        return position

    def _renumber_positions(self, nodes: List[MenuNode]) -> None:
        for index, node in enumerate(nodes):
            if node.position != index:
                node.position = index

    def _check_depth(self, parent: MenuNode, height: int = 0) -> MenuNode:
        root = self.get_menu_root(parent)
        if root is None:
            raise ValidationError.single("parent_id", f"Node {parent.id} does not belong to a menu")
        depth = self.depth_of(parent) + 1 + height
        if depth > root.max_depth:
            raise DepthExceeded(root.max_depth, depth)
        return root

    # ============== Mutations ==============

    def create_root(self, node: MenuNode) -> MenuNode:
        """Append a new menu interval after all existing ones"""
        max_rgt = self.db.query(func.max(MenuNode.rgt)).scalar() or 0
        node.is_root = True
        node.parent_id = None
        node.position = 0
        node.lft = max_rgt + 1
        node.rgt = max_rgt + 2
        self.db.add(node)
        self.db.flush()
        return node

    def insert(self, node: MenuNode, parent_id: int, position: Optional[int] = None) -> MenuNode:
        """Insert a leaf under ``parent_id`` at sibling ``position`` (append by default)"""
        parent = self.require_node(parent_id, "Parent")
        self._check_depth(parent)

        siblings = self.children_of(parent.id)
        position = self._clamp_position(position, len(siblings))
        gap = self._gap_for(parent, siblings, position)
        shifted = [s.id for s in siblings[position:]]

        self.db.flush()
        self._shift_bounds(gap, 2)
        self.db.expire_all()

        if shifted:
            self.db.query(MenuNode).filter(MenuNode.id.in_(shifted)).update(
                {MenuNode.position: MenuNode.position + 1}, synchronize_session=False
            )
            self.db.expire_all()

        node.parent_id = parent.id
        node.is_root = False
        node.slug = None
        node.position = position
        node.lft = gap
        node.rgt = gap + 1
        self.db.add(node)
        self.db.flush()
        return node

    def move(self, node_id: int, new_parent_id: int, new_position: Optional[int] = None) -> MenuNode:
        """Move ``node_id`` and its subtree under ``new_parent_id``"""
        node = self.require_node(node_id)
        if node.is_root:
            raise ValidationError.single("id", "Menu roots cannot be moved")
        parent = self.require_node(new_parent_id, "Parent")
        if node.contains(parent):
            raise CycleDetected(node_id, new_parent_id)
        self._check_depth(parent, self.subtree_height(node))

        old_parent_id = node.parent_id
        siblings = [s for s in self.children_of(parent.id) if s.id != node.id]
        position = self._clamp_position(new_position, len(siblings))
        gap = self._gap_for(parent, siblings, position)
        new_order = [s.id for s in siblings]
        new_order.insert(position, node.id)

        left, right, width = node.lft, node.rgt, node.width
        self.db.flush()

        # Detach the subtree by negating its bounds, close its gap,
        # open a gap at the target, then bring the subtree back.
        self.db.query(MenuNode).filter(MenuNode.lft >= left, MenuNode.rgt <= right).update(
            {MenuNode.lft: -MenuNode.lft, MenuNode.rgt: -MenuNode.rgt}, synchronize_session=False
        )
        self._shift_bounds(right + 1, -width)
        if gap > right:
            gap -= width
        self._shift_bounds(gap, width)
        offset = gap - left
        self.db.query(MenuNode).filter(MenuNode.lft < 0).update(
            {MenuNode.lft: -MenuNode.lft + offset, MenuNode.rgt: -MenuNode.rgt + offset},
            synchronize_session=False,
        )
        self.db.expire_all()

        node.parent_id = parent.id
        by_id = {n.id: n for n in self.db.query(MenuNode).filter(MenuNode.id.in_(new_order)).all()}
        self._renumber_positions([by_id[i] for i in new_order])
        if old_parent_id is not None and old_parent_id != parent.id:
            self._renumber_positions([c for c in self.children_of(old_parent_id) if c.id != node.id])
        self.db.flush()

        logger.info(f"Moved node {node_id} under {new_parent_id} at position {position}")
        return node

    def reorder(self, parent_id: int, ordered_child_ids: Sequence[int]) -> None:
        """Assign positions 0..n-1 in the given order and lay the subtrees out to match"""
        parent = self.require_node(parent_id, "Parent")
        children = self.children_of(parent.id)

        ordered_child_ids = list(ordered_child_ids)
        current_ids = [c.id for c in children]
        if len(set(ordered_child_ids)) != len(ordered_child_ids) or \
                sorted(ordered_child_ids) != sorted(current_ids):
            raise InvalidChildSet(
                f"Ids {ordered_child_ids} do not match the children of node {parent_id}: {current_ids}"
            )

        by_id = {c.id: c for c in children}
        if ordered_child_ids == [c.id for c in sorted(children, key=lambda c: c.lft)]:
            self._renumber_positions([by_id[i] for i in ordered_child_ids])
            self.db.flush()
            return

        members: Dict[int, List[MenuNode]] = {c.id: [c] for c in children}
        for desc in self.descendants(parent):
            if desc.parent_id == parent.id:
                continue
            for child in children:
                if child.lft < desc.lft and desc.rgt < child.rgt:
                    members[child.id].append(desc)
                    break

        cursor = parent.lft + 1
        moves = []
        for child_id in ordered_child_ids:
            child = by_id[child_id]
            moves.append((members[child_id], cursor - child.lft))
            cursor += child.width
        for nodes, offset in moves:
            if offset:
                for n in nodes:
                    n.lft += offset
                    n.rgt += offset
        self._renumber_positions([by_id[i] for i in ordered_child_ids])
        self.db.flush()

    def remove(self, node_id: int) -> int:
        """Delete the node and its subtree; returns the number of rows removed"""
        node = self.require_node(node_id)
        left, right, width = node.lft, node.rgt, node.width
        parent_id = node.parent_id

        self.db.flush()
        removed = (
            self.db.query(MenuNode)
            .filter(MenuNode.lft >= left, MenuNode.rgt <= right)
            .delete(synchronize_session="fetch")
        )
        self._shift_bounds(right + 1, -width)
        self.db.expire_all()

        if parent_id is not None:
            self._renumber_positions(self.children_of(parent_id))
        self.db.flush()
        return removed

    def relayout(self, root: MenuNode, children_map: Dict[int, List[MenuNode]]) -> None:
        """Recompute bounds, parents and positions of a whole menu in one pass.

        ``children_map`` maps a parent id to its ordered children and must
        describe every node that stays in the menu. Intervals after the menu
        are shifted once if its width changes.
        """
        count = sum(len(v) for v in children_map.values())
        old_rgt = root.rgt
        delta = (2 * count + 2) - root.width

        self.db.flush()
        if delta:
            self.db.query(MenuNode).filter(MenuNode.lft > old_rgt).update(
                {MenuNode.lft: MenuNode.lft + delta}, synchronize_session=False
            )
            self.db.query(MenuNode).filter(MenuNode.rgt > old_rgt).update(
                {MenuNode.rgt: MenuNode.rgt + delta}, synchronize_session=False
            )
            # rows of this menu were untouched, only refresh the others
            self.db.expire_all()

        counter = root.lft
        stack = [(root, enumerate(children_map.get(root.id, [])))]
        while stack:
            parent, it = stack[-1]
            position, child = next(it, (None, None))
            if child is None:
                counter += 1
                parent.rgt = counter
                stack.pop()
                continue
            child.parent_id = parent.id
            child.position = position
            counter += 1
            child.lft = counter
            stack.append((child, enumerate(children_map.get(child.id, []))))
        self.db.flush()

    # ============== Integrity ==============

    def check_integrity(self, root_id: int) -> List[str]:
        """Problems found in one menu's bounds, parent links and positions"""
        root = self.require_node(root_id, "Menu")
        nodes = [root] + self.descendants(root)
        problems = []

        seen = set()
        for n in nodes:
            if n.lft >= n.rgt:
                problems.append(f"node {n.id}: lft {n.lft} >= rgt {n.rgt}")
            for bound in (n.lft, n.rgt):
                if bound in seen:
                    problems.append(f"node {n.id}: bound {bound} used twice")
                seen.add(bound)
        expected = set(range(root.lft, root.rgt + 1))
        if seen != expected:
            problems.append(f"bounds of menu {root.id} are not contiguous")

        stack = []
        children: Dict[int, List[MenuNode]] = {}
        for n in nodes:
            while stack and stack[-1].rgt < n.lft:
                stack.pop()
            if stack:
                parent = stack[-1]
                if n.rgt > parent.rgt:
                    problems.append(f"node {n.id} overlaps node {parent.id}")
                if n.parent_id != parent.id:
                    problems.append(f"node {n.id}: parent_id {n.parent_id} but enclosed by {parent.id}")
                children.setdefault(parent.id, []).append(n)
            stack.append(n)

        for parent_id, kids in children.items():
            positions = [k.position for k in kids]
            if positions != list(range(len(kids))):
                problems.append(f"children of {parent_id} have positions {positions}")
        return problems
