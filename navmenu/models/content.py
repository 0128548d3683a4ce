"""
Linkable content entities

Default backing tables for the built-in resource types. Host applications
can point the resource registry at their own models instead.
"""
from datetime import datetime, UTC

from sqlalchemy import Column, Integer, String, DateTime
from navmenu.database import Base


class Page(Base):
    """Content page, soft-deletable"""
    __tablename__ = "pages"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, index=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC).replace(tzinfo=None))


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, index=True)
