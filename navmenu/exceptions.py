"""
Menu error taxonomy

Services raise these; routers translate them to HTTP responses.
All inherit from ValueError so callers that only know the generic
service contract (``except ValueError``) keep working.
"""
from typing import Dict, Optional


class MenuError(ValueError):
    """Base class for all menu errors"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ---- NotFound ----

class NotFound(MenuError):
    pass


class MenuNotFound(NotFound):
    def __init__(self, slug: str):
        super().__init__(f"Menu with slug '{slug}' does not exist")
        self.slug = slug


class NodeNotFound(NotFound):
    def __init__(self, node_id, what: str = "Menu item"):
        super().__init__(f"{what} {node_id} not found")
        self.node_id = node_id


# ---- Validation ----

class ValidationError(MenuError):
    """Field-level validation failure"""

    def __init__(self, errors: Dict[str, str], message: str = "Validation failed"):
        super().__init__(message)
        self.errors = errors

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls({field: message}, message)


# ---- Structural mutations ----

class StructuralError(MenuError):
    pass


class DepthExceeded(StructuralError):
    def __init__(self, max_depth: int, depth: Optional[int] = None):
        msg = f"Operation would exceed maximum depth limit of {max_depth}"
        if depth is not None:
            msg += f" (resulting depth {depth})"
        super().__init__(msg)
        self.max_depth = max_depth
        self.depth = depth


class CycleDetected(StructuralError):
    def __init__(self, node_id, parent_id):
        super().__init__(f"Cannot move node {node_id} under its own descendant {parent_id}")
        self.node_id = node_id
        self.parent_id = parent_id


class InvalidChildSet(StructuralError):
    pass


# ---- Resources ----

class ResourceError(MenuError):
    pass


class UnknownResourceType(ResourceError):
    def __init__(self, resource_type: str):
        super().__init__(f"Resource type '{resource_type}' is not configured.")
        self.resource_type = resource_type


class InvalidResourceConfiguration(ResourceError):
    def __init__(self, resource_type: str, reason: str):
        super().__init__(f"Resource configuration for '{resource_type}' is invalid: {reason}")
        self.resource_type = resource_type
        self.reason = reason


class ResourceResolutionFailure(ResourceError):
    pass


# ---- Resolution ----

class ResolutionTimeout(MenuError):
    def __init__(self, slug: str, timeout_ms: float):
        super().__init__(f"Resolving menu '{slug}' exceeded {timeout_ms:.0f}ms")
        self.slug = slug
        self.timeout_ms = timeout_ms
