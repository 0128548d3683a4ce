"""
Resource Resolver - links from menu items to externally owned records

Resource types are declared in configuration (a mapping, optionally read
from YAML) and resolved once, when the registry is built:

    resources:
      Page:
        model: navmenu.models.content.Page
        name_field: title
        slug_field: slug
        route_pattern: /pages/{slug}
        supports_soft_delete: true

A type whose configuration is broken is recorded as invalid and logged;
the remaining types stay usable.
"""
import importlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

import yaml
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable, SQLAlchemyError
from sqlalchemy.orm import Session

from navmenu.exceptions import (
    InvalidResourceConfiguration, ResourceResolutionFailure, UnknownResourceType,
)

logger = logging.getLogger(__name__)

SLUG_PLACEHOLDER = "{slug}"
REQUIRED_KEYS = ("model", "name_field", "slug_field", "route_pattern")

DEFAULT_RESOURCE_CONFIG: Dict[str, Dict[str, Any]] = {
    "Page": {
        "model": "navmenu.models.content.Page",
        "name_field": "title",
        "slug_field": "slug",
        "route_pattern": "/pages/{slug}",
        "supports_soft_delete": True,
    },
    "Category": {
        "model": "navmenu.models.content.Category",
        "name_field": "name",
        "slug_field": "slug",
        "route_pattern": "/categories/{slug}",
    },
}


@dataclass
class ResourceRecord:
    id: Any
    name: Optional[str]
    slug: Optional[str]
    is_deleted: bool = False

    def to_dict(self, include_deleted: bool = True) -> Dict[str, Any]:
        data = {"id": self.id, "name": self.name, "slug": self.slug}
        if include_deleted:
            data["is_deleted"] = self.is_deleted
        return data


@dataclass(frozen=True)
class ResourceType:
    """Lookup capability for one resource type"""
    name: str
    model: Any
    name_field: str
    slug_field: str
    route_pattern: str
    key_field: str = "id"
    supports_soft_delete: bool = False
    deleted_field: str = "deleted_at"

    def _column(self, field: str):
        return getattr(self.model, field)

    def _record(self, row) -> ResourceRecord:
        deleted = False
        if self.supports_soft_delete:
            deleted = getattr(row, self.deleted_field) is not None
        return ResourceRecord(
            id=getattr(row, self.key_field),
            name=getattr(row, self.name_field),
            slug=getattr(row, self.slug_field),
            is_deleted=deleted,
        )

    def fetch_by_id(self, db: Session, resource_id) -> Optional[ResourceRecord]:
        """Soft-deleted rows are returned and flagged, not hidden"""
        row = db.query(self.model).filter(self._column(self.key_field) == resource_id).first()
        return self._record(row) if row is not None else None

    def fetch_many(self, db: Session, resource_ids: Iterable) -> Dict[Any, ResourceRecord]:
        ids = list(set(resource_ids))
        if not ids:
            return {}
        rows = db.query(self.model).filter(self._column(self.key_field).in_(ids)).all()
        return {getattr(row, self.key_field): self._record(row) for row in rows}

    def search_by_name(self, db: Session, term: str = "", limit: int = 50) -> List[ResourceRecord]:
        query = db.query(self.model)
        if term:
            query = query.filter(self._column(self.name_field).ilike(f"%{term}%"))
        if self.supports_soft_delete:
            query = query.filter(self._column(self.deleted_field).is_(None))
        rows = query.order_by(self._column(self.name_field)).limit(limit).all()
        return [self._record(row) for row in rows]

    def url_for(self, slug: str) -> str:
        return self.route_pattern.replace(SLUG_PLACEHOLDER, str(slug))


def _import_model(path: str):
    module_name, _, attr = path.rpartition(".")
    if not module_name:
        raise ImportError(f"'{path}' is not a dotted path")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


def build_resource_type(name: str, config: Mapping[str, Any]) -> ResourceType:
    """Validate one configuration entry and resolve its model"""
    if not isinstance(config, Mapping):
        raise InvalidResourceConfiguration(name, "configuration must be a mapping")
    for key in REQUIRED_KEYS:
        if not config.get(key):
            raise InvalidResourceConfiguration(name, f"missing required key: {key}")

    route_pattern = str(config["route_pattern"])
    if SLUG_PLACEHOLDER not in route_pattern:
        raise InvalidResourceConfiguration(name, "route pattern must contain {slug} placeholder")

    model = config["model"]
    if isinstance(model, str):
        try:
            model = _import_model(model)
        except (ImportError, AttributeError) as e:
            raise InvalidResourceConfiguration(name, f"model '{config['model']}' cannot be imported: {e}")
    try:
        mapper = sa_inspect(model)
    except NoInspectionAvailable:
        raise InvalidResourceConfiguration(name, f"model {model!r} is not a mapped class")

    key_field = config.get("key_field") or mapper.primary_key[0].key
    supports_soft_delete = bool(config.get("supports_soft_delete", False))
    deleted_field = config.get("deleted_field") or "deleted_at"

    fields = [key_field, config["name_field"], config["slug_field"]]
    if supports_soft_delete:
        fields.append(deleted_field)
    known = set(mapper.all_orm_descriptors.keys())
    for field in fields:
        if field not in known:
            raise InvalidResourceConfiguration(name, f"model has no field '{field}'")

    return ResourceType(
        name=name,
        model=model,
        name_field=config["name_field"],
        slug_field=config["slug_field"],
        route_pattern=route_pattern,
        key_field=key_field,
        supports_soft_delete=supports_soft_delete,
        deleted_field=deleted_field,
    )


def load_resource_config(path: str) -> Dict[str, Any]:
    """Read the ``resources`` mapping from a YAML file"""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    resources = data.get("resources", {}) if isinstance(data, dict) else {}
    if not isinstance(resources, dict):
        raise InvalidResourceConfiguration("*", f"'resources' in {path} must be a mapping")
    return resources


class ResourceRegistry:
    """Static registry of resource types, built once at startup"""

    def __init__(self, types: Optional[Dict[str, ResourceType]] = None,
                 invalid: Optional[Dict[str, str]] = None):
        self._types: Dict[str, ResourceType] = dict(types or {})
        self.invalid: Dict[str, str] = dict(invalid or {})

    @classmethod
    def from_config(cls, config: Mapping[str, Mapping[str, Any]]) -> "ResourceRegistry":
        types, invalid = {}, {}
        for name, entry in (config or {}).items():
            try:
                types[name] = build_resource_type(name, entry)
            except InvalidResourceConfiguration as e:
                logger.error(f"Resource type '{name}' disabled: {e}")
                invalid[name] = str(e)
        return cls(types, invalid)

    def names(self) -> List[str]:
        return list(self._types.keys())

    def types(self) -> List[ResourceType]:
        return list(self._types.values())

    def get(self, name: str) -> ResourceType:
        resource_type = self._types.get(name)
        if resource_type is not None:
            return resource_type
        if name in self.invalid:
            raise InvalidResourceConfiguration(name, self.invalid[name])
        raise UnknownResourceType(name)

    def __contains__(self, name: str) -> bool:
        return name in self._types


class ResourceResolver:
    """URL generation and record lookup for linked resources"""

    def __init__(self, db: Session, registry: ResourceRegistry):
        self.db = db
        self.registry = registry

    def get_resource_types(self) -> List[str]:
        return self.registry.names()

    def resolve_url(self, resource_type: str, resource_slug: str) -> str:
        return self.registry.get(resource_type).url_for(resource_slug)

    def get_resource(self, resource_type: str, resource_id) -> Optional[ResourceRecord]:
        return self.registry.get(resource_type).fetch_by_id(self.db, resource_id)

    def get_resources(self, resource_type: str, resource_ids: Iterable) -> Dict[Any, ResourceRecord]:
        """Records by id for one type in a single query; missing ids are absent"""
        resource = self.registry.get(resource_type)
        try:
            return resource.fetch_many(self.db, resource_ids)
        except SQLAlchemyError as e:
            raise ResourceResolutionFailure(f"Lookup of '{resource_type}' records failed: {e}") from e

    def search_resources(self, resource_type: str, query: str = "", limit: int = 50) -> List[ResourceRecord]:
        return self.registry.get(resource_type).search_by_name(self.db, query, limit)


_registry: Optional[ResourceRegistry] = None


def get_resource_registry() -> ResourceRegistry:
    """Process-wide registry, built lazily from settings"""
    global _registry
    if _registry is None:
        from navmenu.config import settings
        if settings.RESOURCE_CONFIG_PATH:
            config = load_resource_config(settings.RESOURCE_CONFIG_PATH)
        else:
            config = DEFAULT_RESOURCE_CONFIG
        _registry = ResourceRegistry.from_config(config)
        logger.info(f"Resource registry ready: {_registry.names()}")
    return _registry
