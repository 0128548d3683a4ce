"""
Menu node ORM model

A single table holds both menus (root nodes) and menu items. Hierarchy is
encoded twice: ``parent_id`` for direct links and nested-set bounds
(``lft``/``rgt``) for single-query subtree reads. Numbering is global, menus
occupy consecutive disjoint intervals.
"""
from datetime import datetime, UTC
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Index, Enum as SQLEnum
)
from navmenu.database import Base


class MenuTarget(str, Enum):
    """Link target"""
    SELF = "_self"
    BLANK = "_blank"


class MenuNode(Base):
    __tablename__ = "menu_nodes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    parent_id = Column(Integer, ForeignKey("menu_nodes.id", ondelete="CASCADE"), nullable=True)

    name = Column(String(255), nullable=False)
    custom_url = Column(String(2048), nullable=True)

    # Link to an externally owned resource
    resource_type = Column(String(255), nullable=True)
    resource_id = Column(Integer, nullable=True)
    resource_slug = Column(String(255), nullable=True)

    # Visibility window, stored as naive UTC
    display_at = Column(DateTime, nullable=True)
    hide_at = Column(DateTime, nullable=True)

    icon = Column(String(100), nullable=True)
    css_class = Column(String(255), nullable=True)
    target = Column(SQLEnum(MenuTarget), default=MenuTarget.SELF, nullable=False)
    position = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Root-only fields
    is_root = Column(Boolean, default=False, nullable=False)
    slug = Column(String(255), nullable=True)
    max_depth = Column(Integer, default=2, nullable=False)

    # Nested set bounds
    lft = Column(Integer, nullable=False, default=0)
    rgt = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=lambda: datetime.now(UTC).replace(tzinfo=None))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(UTC).replace(tzinfo=None),
        onupdate=lambda: datetime.now(UTC).replace(tzinfo=None),
    )

    __table_args__ = (
        Index("ix_menu_nodes_parent_id", "parent_id"),
        Index("ix_menu_nodes_is_root", "is_root"),
        Index(
            "uq_menu_nodes_root_slug", "slug", unique=True,
            sqlite_where=is_root.is_(True), postgresql_where=is_root.is_(True),
        ),
        Index("ix_menu_nodes_bounds", "lft", "rgt"),
        Index("ix_menu_nodes_resource", "resource_type", "resource_id"),
        Index("ix_menu_nodes_window", "display_at", "hide_at"),
    )

    @property
    def width(self) -> int:
        return self.rgt - self.lft + 1

    def contains(self, other: "MenuNode") -> bool:
        """True when ``other`` lies inside this node's interval (self included)"""
        return self.lft <= other.lft and other.rgt <= self.rgt

    def __repr__(self) -> str:
        kind = "menu" if self.is_root else "item"
        return f"<MenuNode {kind} {self.id}: {self.name} [{self.lft},{self.rgt}]>"
