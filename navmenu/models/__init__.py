"""
ORM models
"""
from navmenu.models.menu import MenuNode, MenuTarget
from navmenu.models.content import Page, Category
from navmenu.models.user import AdminUser

__all__ = ["MenuNode", "MenuTarget", "Page", "Category", "AdminUser"]
