# Menu services
from navmenu.services.tree_store import TreeStore
from navmenu.services.resource_resolver import ResourceRegistry, ResourceResolver
from navmenu.services.menu_resolver import MenuResolver
from navmenu.services.hierarchy_service import HierarchyService

__all__ = [
    'TreeStore', 'ResourceRegistry', 'ResourceResolver',
    'MenuResolver', 'HierarchyService'
]
