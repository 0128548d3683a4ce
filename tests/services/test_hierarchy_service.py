"""
Hierarchy Mutation Engine tests
"""
from datetime import datetime, timedelta, UTC

import pytest
from sqlalchemy.exc import IntegrityError

from navmenu.exceptions import (
    CycleDetected, DepthExceeded, InvalidChildSet, NodeNotFound, ValidationError,
)
from navmenu.models.menu import MenuNode, MenuTarget
from navmenu.services.hierarchy_service import HierarchyService, slugify

T = datetime(2026, 6, 1, 8, 0, tzinfo=UTC)


@pytest.fixture
def service(db_session, registry):
    return HierarchyService(db_session, registry)


def _tree(service, menu_id):
    """[(name, depth, position)] in pre-order"""
    return [(n.name, d, n.position) for n, d in service.list_items(menu_id)]


class TestMenus:

    def test_create_menu_defaults(self, service):
        menu = service.create_menu({"name": "Main Navigation"})
        assert menu.slug == "main-navigation"
        assert menu.max_depth == 2
        assert menu.is_root is True
        assert menu.is_active is True

    def test_slugify(self):
        assert slugify("  Footer / Legal Links ") == "footer-legal-links"

    def test_duplicate_slug(self, service):
        service.create_menu({"name": "Main", "slug": "main"})
        with pytest.raises(ValidationError) as exc:
            service.create_menu({"name": "Other", "slug": "main"})
        assert exc.value.errors == {"slug": "The slug has already been taken."}

    def test_root_slug_unique_in_database(self, db_session, store):
        store.create_root(MenuNode(name="Main", slug="main", max_depth=2))
        db_session.commit()
        with pytest.raises(IntegrityError):
            store.create_root(MenuNode(name="Again", slug="main", max_depth=2))
        db_session.rollback()

    def test_slug_taken_after_validation(self, monkeypatch, service):
        service.create_menu({"name": "Main", "slug": "main"})
        # another writer takes the slug between the check and the insert
        monkeypatch.setattr(HierarchyService, "_validate_menu", lambda self, values, menu_id=None: None)

        with pytest.raises(ValidationError) as exc:
            service.create_menu({"name": "Other", "slug": "main"})
        assert exc.value.errors == {"slug": "The slug has already been taken."}
        assert [m.slug for m, _ in service.list_menus()] == ["main"]

        other = service.create_menu({"name": "Other", "slug": "other"})
        with pytest.raises(ValidationError):
            service.update_menu(other.id, {"slug": "main"})

    def test_item_slugs_do_not_collide_with_menus(self, service):
        main = service.create_menu({"name": "Main", "slug": "main"})
        service.create_item(main.id, {"name": "main"})
        service.create_menu({"name": "Second", "slug": "second"})

    @pytest.mark.parametrize("data,field", [
        ({"name": "ab"}, "name"),
        ({"name": "Main", "slug": "bad slug!"}, "slug"),
        ({"name": "Main", "max_depth": 11}, "max_depth"),
    ])
    def test_create_menu_validation(self, service, data, field):
        with pytest.raises(ValidationError) as exc:
            service.create_menu(data)
        assert field in exc.value.errors

    def test_update_menu(self, service):
        menu = service.create_menu({"name": "Main"})
        updated = service.update_menu(menu.id, {"name": "Primary", "max_depth": 4})
        assert updated.name == "Primary"
        assert updated.slug == "main"
        assert updated.max_depth == 4

    def test_shrinking_max_depth_below_tree_rejected(self, service):
        menu = service.create_menu({"name": "Main", "max_depth": 3})
        a = service.create_item(menu.id, {"name": "A"})
        b = service.create_item(menu.id, {"name": "B", "parent_id": a.id})
        service.create_item(menu.id, {"name": "C", "parent_id": b.id})

        with pytest.raises(ValidationError):
            service.update_menu(menu.id, {"max_depth": 2})

    def test_delete_menu_removes_tree(self, db_session, service):
        menu = service.create_menu({"name": "Main"})
        a = service.create_item(menu.id, {"name": "A"})
        service.create_item(menu.id, {"name": "A1", "parent_id": a.id})

        assert service.delete_menu(menu.id) == 3
        assert db_session.query(MenuNode).count() == 0

    def test_get_menu_rejects_item_id(self, service):
        menu = service.create_menu({"name": "Main"})
        item = service.create_item(menu.id, {"name": "A"})
        with pytest.raises(NodeNotFound):
            service.get_menu(item.id)


class TestItems:

    def test_create_defaults_to_root_append(self, service):
        menu = service.create_menu({"name": "Main"})
        service.create_item(menu.id, {"name": "A"})
        service.create_item(menu.id, {"name": "B"})
        service.create_item(menu.id, {"name": "First", "position": 0})

        assert _tree(service, menu.id) == [("First", 1, 0), ("A", 1, 1), ("B", 1, 2)]

    def test_parent_from_other_menu_rejected(self, service):
        main = service.create_menu({"name": "Main"})
        footer = service.create_menu({"name": "Footer"})
        other = service.create_item(footer.id, {"name": "Legal"})

        with pytest.raises(ValidationError) as exc:
            service.create_item(main.id, {"name": "A", "parent_id": other.id})
        assert "parent_id" in exc.value.errors

    def test_missing_parent(self, service):
        menu = service.create_menu({"name": "Main"})
        with pytest.raises(NodeNotFound):
            service.create_item(menu.id, {"name": "A", "parent_id": 9999})

    @pytest.mark.parametrize("data,field", [
        ({"name": "  "}, "name"),
        ({"name": "A", "display_at": T, "hide_at": T}, "hide_at"),
        ({"name": "A", "display_at": T, "hide_at": T - timedelta(days=1)}, "hide_at"),
        ({"name": "A", "resource_type": "Page"}, "resource_id"),
        ({"name": "A", "resource_id": 3}, "resource_type"),
        ({"name": "A", "resource_type": "Product", "resource_id": 3}, "resource_type"),
        ({"name": "A", "target": "_parent"}, "target"),
    ])
    def test_item_validation(self, service, data, field):
        menu = service.create_menu({"name": "Main"})
        with pytest.raises(ValidationError) as exc:
            service.create_item(menu.id, data)
        assert field in exc.value.errors

    def test_depth_limit(self, db_session, service):
        menu = service.create_menu({"name": "Main", "max_depth": 2})
        a = service.create_item(menu.id, {"name": "A"})
        b = service.create_item(menu.id, {"name": "B", "parent_id": a.id})

        with pytest.raises(DepthExceeded):
            service.create_item(menu.id, {"name": "C", "parent_id": b.id})
        assert db_session.query(MenuNode).count() == 3

    def test_window_stored_as_naive_utc(self, service):
        menu = service.create_menu({"name": "Main"})
        item = service.create_item(menu.id, {
            "name": "Sale",
            "display_at": T,
            "hide_at": T + timedelta(days=7),
        })
        assert item.display_at == datetime(2026, 6, 1, 8, 0)

    def test_update_fields(self, service):
        menu = service.create_menu({"name": "Main"})
        item = service.create_item(menu.id, {"name": "A"})

        updated = service.update_item(item.id, {"name": "Renamed", "target": MenuTarget.BLANK, "icon": "star"})

        assert updated.name == "Renamed"
        assert updated.target == MenuTarget.BLANK
        assert updated.icon == "star"

    def test_update_parent_is_a_move(self, service):
        menu = service.create_menu({"name": "Main"})
        a = service.create_item(menu.id, {"name": "A"})
        b = service.create_item(menu.id, {"name": "B"})

        service.update_item(b.id, {"parent_id": a.id})

        assert _tree(service, menu.id) == [("A", 1, 0), ("B", 2, 0)]
        assert service.store.check_integrity(menu.id) == []

    def test_update_parent_none_moves_to_root(self, service):
        menu = service.create_menu({"name": "Main"})
        a = service.create_item(menu.id, {"name": "A"})
        b = service.create_item(menu.id, {"name": "B", "parent_id": a.id})

        service.update_item(b.id, {"parent_id": None})

        assert _tree(service, menu.id) == [("A", 1, 0), ("B", 1, 1)]

    def test_update_own_parent_rejected(self, service):
        menu = service.create_menu({"name": "Main"})
        a = service.create_item(menu.id, {"name": "A"})
        with pytest.raises(ValidationError):
            service.update_item(a.id, {"parent_id": a.id})

    def test_update_validates_merged_window(self, service):
        menu = service.create_menu({"name": "Main"})
        a = service.create_item(menu.id, {"name": "A", "display_at": T})
        with pytest.raises(ValidationError):
            service.update_item(a.id, {"hide_at": T - timedelta(hours=1)})

    def test_move_cycle_rolls_back(self, service):
        menu = service.create_menu({"name": "Main", "max_depth": 3})
        a = service.create_item(menu.id, {"name": "A"})
        a1 = service.create_item(menu.id, {"name": "A1", "parent_id": a.id})
        before = _tree(service, menu.id)

        with pytest.raises(CycleDetected):
            service.move_item(a.id, a1.id)
        assert _tree(service, menu.id) == before

    def test_move_to_root_position(self, service):
        menu = service.create_menu({"name": "Main"})
        a = service.create_item(menu.id, {"name": "A"})
        a1 = service.create_item(menu.id, {"name": "A1", "parent_id": a.id})

        service.move_item(a1.id, None, 0)

        assert _tree(service, menu.id) == [("A1", 1, 0), ("A", 1, 1)]

    def test_delete_item(self, service):
        menu = service.create_menu({"name": "Main"})
        a = service.create_item(menu.id, {"name": "A"})
        service.create_item(menu.id, {"name": "A1", "parent_id": a.id})
        service.create_item(menu.id, {"name": "B"})

        assert service.delete_item(a.id) == 2
        assert _tree(service, menu.id) == [("B", 1, 0)]

    def test_delete_item_rejects_menu_root(self, service):
        menu = service.create_menu({"name": "Main"})
        with pytest.raises(NodeNotFound):
            service.delete_item(menu.id)

    def test_reorder_children(self, service):
        menu = service.create_menu({"name": "Main"})
        a = service.create_item(menu.id, {"name": "A"})
        b = service.create_item(menu.id, {"name": "B"})

        service.reorder_children(menu.id, [b.id, a.id])
        assert _tree(service, menu.id) == [("B", 1, 0), ("A", 1, 1)]

        with pytest.raises(InvalidChildSet):
            service.reorder_children(menu.id, [a.id])

    def test_resource_names(self, db_session, service):
        from navmenu.models.content import Page
        page = Page(title="About Us", slug="about")
        db_session.add(page)
        db_session.commit()
        menu = service.create_menu({"name": "Main"})
        item = service.create_item(menu.id, {
            "name": "About", "resource_type": "Page", "resource_id": page.id, "resource_slug": "about",
        })
        plain = service.create_item(menu.id, {"name": "Plain"})

        names = service.resource_names([item, plain])
        assert names == {item.id: "About Us"}


class TestRestructure:

    def test_flat_assignments(self, service):
        menu = service.create_menu({"name": "Main"})
        a = service.create_item(menu.id, {"name": "A"})
        b = service.create_item(menu.id, {"name": "B"})
        c = service.create_item(menu.id, {"name": "C"})

        service.restructure(menu.id, [
            {"id": c.id, "parent_id": None, "position": 0},
            {"id": a.id, "parent_id": None, "position": 1},
            {"id": b.id, "parent_id": a.id, "position": 0},
        ])

        assert _tree(service, menu.id) == [("C", 1, 0), ("A", 1, 1), ("B", 2, 0)]
        assert service.store.check_integrity(menu.id) == []

    def test_unmentioned_items_keep_place(self, service):
        menu = service.create_menu({"name": "Main"})
        a = service.create_item(menu.id, {"name": "A"})
        service.create_item(menu.id, {"name": "B"})
        service.create_item(menu.id, {"name": "A1", "parent_id": a.id})

        service.restructure(menu.id, [{"id": a.id, "parent_id": None, "position": 5}])

        assert _tree(service, menu.id) == [("B", 1, 0), ("A", 1, 1), ("A1", 2, 0)]

    def test_cycle_rejected(self, service):
        menu = service.create_menu({"name": "Main", "max_depth": 4})
        a = service.create_item(menu.id, {"name": "A"})
        b = service.create_item(menu.id, {"name": "B", "parent_id": a.id})
        before = _tree(service, menu.id)

        with pytest.raises(CycleDetected):
            service.restructure(menu.id, [{"id": a.id, "parent_id": b.id, "position": 0}])
        assert _tree(service, menu.id) == before

    def test_depth_rejected(self, service):
        menu = service.create_menu({"name": "Main", "max_depth": 2})
        a = service.create_item(menu.id, {"name": "A"})
        b = service.create_item(menu.id, {"name": "B", "parent_id": a.id})
        c = service.create_item(menu.id, {"name": "C"})

        with pytest.raises(DepthExceeded):
            service.restructure(menu.id, [{"id": c.id, "parent_id": b.id, "position": 0}])

    def test_foreign_item_rejected(self, service):
        main = service.create_menu({"name": "Main"})
        footer = service.create_menu({"name": "Footer"})
        legal = service.create_item(footer.id, {"name": "Legal"})

        with pytest.raises(ValidationError) as exc:
            service.restructure(main.id, [{"id": legal.id, "parent_id": None, "position": 0}])
        assert "items.0.id" in exc.value.errors


class TestRebuild:

    def test_rebuild_updates_creates_and_deletes(self, db_session, service):
        main = service.create_menu({"name": "Main"})
        footer = service.create_menu({"name": "Footer"})
        a = service.create_item(main.id, {"name": "A"})
        b = service.create_item(main.id, {"name": "B"})
        service.create_item(main.id, {"name": "Doomed", "parent_id": b.id})
        service.create_item(footer.id, {"name": "Legal"})

        service.rebuild(main.id, [
            {"id": b.id, "name": "B renamed", "children": [
                {"id": a.id, "name": "A"},
                {"name": "New", "custom_url": "/new"},
            ]},
        ])

        assert _tree(service, main.id) == [("B renamed", 1, 0), ("A", 2, 0), ("New", 2, 1)]
        assert [n.name for n, _ in service.list_items(footer.id)] == ["Legal"]
        assert db_session.query(MenuNode).filter(MenuNode.name == "Doomed").count() == 0
        assert service.store.check_integrity(main.id) == []
        assert service.store.check_integrity(footer.id) == []

    def test_rebuild_empty_clears_menu(self, service):
        menu = service.create_menu({"name": "Main"})
        service.create_item(menu.id, {"name": "A"})

        service.rebuild(menu.id, [])

        assert service.list_items(menu.id) == []
        assert service.store.check_integrity(menu.id) == []

    def test_rebuild_depth_rejected(self, service):
        menu = service.create_menu({"name": "Main", "max_depth": 1})
        service.create_item(menu.id, {"name": "A"})
        before = _tree(service, menu.id)

        with pytest.raises(DepthExceeded):
            service.rebuild(menu.id, [{"name": "X", "children": [{"name": "Y"}]}])
        assert _tree(service, menu.id) == before

    def test_rebuild_unknown_and_duplicate_ids(self, service):
        menu = service.create_menu({"name": "Main"})
        a = service.create_item(menu.id, {"name": "A"})

        with pytest.raises(ValidationError) as exc:
            service.rebuild(menu.id, [
                {"id": a.id, "name": "A"},
                {"id": a.id, "name": "A again"},
                {"id": 9999, "name": "Nope"},
            ])
        assert set(exc.value.errors) == {"menu_structure.1.id", "menu_structure.2.id"}

    def test_rebuild_field_errors_reported_by_path(self, service):
        menu = service.create_menu({"name": "Main"})
        with pytest.raises(ValidationError) as exc:
            service.rebuild(menu.id, [{"name": "Ok", "children": [{"name": ""}]}])
        assert "menu_structure.0.children.0.name" in exc.value.errors
