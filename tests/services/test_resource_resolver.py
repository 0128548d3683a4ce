"""
Resource registry / resolver tests
"""
from datetime import datetime

import pytest

from navmenu.exceptions import (
    InvalidResourceConfiguration, ResourceResolutionFailure, UnknownResourceType,
)
from navmenu.models.content import Page, Category
from navmenu.services.resource_resolver import (
    DEFAULT_RESOURCE_CONFIG, ResourceRegistry, ResourceResolver, build_resource_type,
    load_resource_config,
)


@pytest.fixture
def pages(db_session):
    about = Page(title="About Us", slug="about")
    contact = Page(title="Contact", slug="contact")
    old = Page(title="About the old team", slug="old-team", deleted_at=datetime(2026, 1, 1))
    db_session.add_all([about, contact, old])
    db_session.commit()
    return about, contact, old


class TestConfiguration:

    def test_defaults_are_valid(self, registry):
        assert registry.names() == ["Page", "Category"]
        assert registry.invalid == {}
        page = registry.get("Page")
        assert page.model is Page
        assert page.supports_soft_delete is True
        assert registry.get("Category").supports_soft_delete is False

    def test_missing_key(self):
        with pytest.raises(InvalidResourceConfiguration, match="missing required key: slug_field"):
            build_resource_type("Broken", {
                "model": "navmenu.models.content.Page",
                "name_field": "title",
                "route_pattern": "/x/{slug}",
            })

    def test_route_without_placeholder(self):
        with pytest.raises(InvalidResourceConfiguration, match="placeholder"):
            build_resource_type("Broken", {
                "model": "navmenu.models.content.Page",
                "name_field": "title",
                "slug_field": "slug",
                "route_pattern": "/pages",
            })

    def test_unimportable_model(self):
        with pytest.raises(InvalidResourceConfiguration, match="cannot be imported"):
            build_resource_type("Broken", {
                "model": "navmenu.models.content.Product",
                "name_field": "name",
                "slug_field": "slug",
                "route_pattern": "/products/{slug}",
            })

    def test_unknown_field(self):
        with pytest.raises(InvalidResourceConfiguration, match="no field 'headline'"):
            build_resource_type("Broken", {
                "model": Page,
                "name_field": "headline",
                "slug_field": "slug",
                "route_pattern": "/pages/{slug}",
            })

    def test_soft_delete_flag_needs_column(self):
        with pytest.raises(InvalidResourceConfiguration, match="deleted_at"):
            build_resource_type("Broken", {
                "model": Category,
                "name_field": "name",
                "slug_field": "slug",
                "route_pattern": "/c/{slug}",
                "supports_soft_delete": True,
            })

    def test_invalid_type_does_not_disable_others(self):
        config = dict(DEFAULT_RESOURCE_CONFIG)
        config["Product"] = {"model": "shop.models.Product", "name_field": "name",
                             "slug_field": "slug", "route_pattern": "/products/{slug}"}
        registry = ResourceRegistry.from_config(config)

        assert "Product" in registry.invalid
        assert "Product" not in registry
        assert registry.get("Page").url_for("about") == "/pages/about"
        with pytest.raises(InvalidResourceConfiguration):
            registry.get("Product")

    def test_unknown_type(self, registry):
        with pytest.raises(UnknownResourceType) as exc:
            registry.get("Homepage")
        assert exc.value.message == "Resource type 'Homepage' is not configured."

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "resources.yaml"
        path.write_text(
            "resources:\n"
            "  Page:\n"
            "    model: navmenu.models.content.Page\n"
            "    name_field: title\n"
            "    slug_field: slug\n"
            "    route_pattern: /p/{slug}\n"
            "    supports_soft_delete: true\n",
            encoding="utf-8",
        )
        registry = ResourceRegistry.from_config(load_resource_config(str(path)))
        assert registry.names() == ["Page"]
        assert registry.get("Page").url_for("home") == "/p/home"


class TestResolver:

    def test_resolve_url(self, db_session, registry):
        resolver = ResourceResolver(db_session, registry)
        assert resolver.resolve_url("Category", "shoes") == "/categories/shoes"
        with pytest.raises(UnknownResourceType):
            resolver.resolve_url("Product", "x")

    def test_get_resource_reports_soft_delete(self, db_session, registry, pages):
        about, _, old = pages
        resolver = ResourceResolver(db_session, registry)

        record = resolver.get_resource("Page", about.id)
        assert record.to_dict() == {"id": about.id, "name": "About Us", "slug": "about", "is_deleted": False}
        assert resolver.get_resource("Page", old.id).is_deleted is True
        assert resolver.get_resource("Page", 9999) is None

    def test_get_resources_batched(self, db_session, registry, pages):
        about, contact, _ = pages
        resolver = ResourceResolver(db_session, registry)
        records = resolver.get_resources("Page", [about.id, contact.id, about.id, 9999])
        assert set(records) == {about.id, contact.id}

    def test_search_excludes_soft_deleted(self, db_session, registry, pages):
        resolver = ResourceResolver(db_session, registry)
        results = resolver.search_resources("Page", "about")
        assert [r.slug for r in results] == ["about"]

    def test_search_limit_and_order(self, db_session, registry, pages):
        resolver = ResourceResolver(db_session, registry)
        results = resolver.search_resources("Page", "", limit=1)
        assert [r.name for r in results] == ["About Us"]

    def test_resource_types(self, db_session, registry):
        assert ResourceResolver(db_session, registry).get_resource_types() == ["Page", "Category"]

    def test_lookup_failure_is_wrapped(self, db_engine, db_session, registry):
        Page.__table__.drop(db_engine)
        resolver = ResourceResolver(db_session, registry)
        with pytest.raises(ResourceResolutionFailure):
            resolver.get_resources("Page", [1])
