# API Routers
from navmenu.routers import auth, admin_menus, public_menus

__all__ = ['auth', 'admin_menus', 'public_menus']
