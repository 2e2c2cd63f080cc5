"""Tests for the TreeEngine facade: lifecycle hooks and traversal queries."""

from __future__ import annotations

import logging

import pytest
from sqlalchemy import update

from tests.fixtures.models import Category, Department, Folder
from tests.fixtures.trees import build_tree, intervals_of
from tree_index.core.database.hierarchy import NodeInterval, TreeEngine
from tree_index.core.exceptions import CycleError, NodeNotFoundError
from tree_index.core.settings import TreeSettings

pytestmark = pytest.mark.unit

CATALOG = (
    ("electronics", None),
    ("computers", "electronics"),
    ("laptops", "computers"),
    ("desktops", "computers"),
    ("phones", "electronics"),
    ("books", None),
)


@pytest.fixture
async def catalog(db_session, category_tree) -> TreeEngine[Category]:
    """electronics(computers(laptops, desktops), phones), books."""
    await build_tree(db_session, category_tree, *CATALOG)
    return category_tree


def ids(rows):
    return [row.tree_id for row in rows]


# ============================================================================
# Traversal Tests
# ============================================================================


async def test_children_in_sibling_order(db_session, catalog):
    assert ids(await catalog.children(db_session, "computers")) == ["laptops", "desktops"]
    assert ids(await catalog.children(db_session, "laptops")) == []


@pytest.mark.parametrize("root_ref", [None, ""])
async def test_children_of_root_ref_are_roots(db_session, catalog, root_ref):
    assert ids(await catalog.children(db_session, root_ref)) == ["electronics", "books"]


async def test_children_skip_unplaced_rows(db_session, catalog):
    db_session.add(Category(id="tablets", parent_id="electronics"))
    await db_session.flush()

    assert ids(await catalog.children(db_session, "electronics")) == ["computers", "phones"]


async def test_parent(db_session, catalog):
    assert (await catalog.parent(db_session, "laptops")).id == "computers"
    assert (await catalog.parent(db_session, "phones")).id == "electronics"
    assert await catalog.parent(db_session, "electronics") is None


async def test_ancestors(db_session, catalog):
    assert ids(await catalog.ancestors(db_session, "laptops")) == ["electronics", "computers"]
    assert ids(await catalog.ancestors(db_session, "laptops", include_self=True)) == [
        "electronics",
        "computers",
        "laptops",
    ]
    assert ids(await catalog.ancestors(db_session, "books")) == []


async def test_descendants_in_preorder(db_session, catalog):
    assert ids(await catalog.descendants(db_session, "electronics")) == [
        "computers",
        "laptops",
        "desktops",
        "phones",
    ]
    assert ids(await catalog.descendants(db_session, "computers", include_self=True)) == [
        "computers",
        "laptops",
        "desktops",
    ]


async def test_descendants_with_max_depth(db_session, catalog):
    assert ids(await catalog.descendants(db_session, "electronics", max_depth=1)) == ["computers", "phones"]
    assert ids(await catalog.descendants(db_session, "electronics", max_depth=0)) == []
    assert ids(await catalog.descendants(db_session, "electronics", include_self=True, max_depth=0)) == [
        "electronics"
    ]
    assert len(await catalog.descendants(db_session, "electronics", max_depth=5)) == 4


async def test_siblings(db_session, catalog):
    assert ids(await catalog.siblings(db_session, "laptops")) == ["desktops"]
    assert ids(await catalog.siblings(db_session, "laptops", include_self=True)) == ["laptops", "desktops"]
    assert ids(await catalog.siblings(db_session, "books")) == ["electronics"]


async def test_path(db_session, catalog):
    assert ids(await catalog.path(db_session, "desktops")) == ["electronics", "computers", "desktops"]
    assert ids(await catalog.path(db_session, "books")) == ["books"]


async def test_leaves_and_roots(db_session, catalog):
    assert ids(await catalog.leaves(db_session)) == ["laptops", "desktops", "phones", "books"]
    assert ids(await catalog.roots(db_session)) == ["electronics", "books"]


async def test_depth(db_session, catalog):
    assert await catalog.depth(db_session, "electronics") == 0
    assert await catalog.depth(db_session, "computers") == 1
    assert await catalog.depth(db_session, "laptops") == 2


async def test_subtree_count(db_session, catalog):
    assert await catalog.subtree_count(db_session, "electronics") == 4
    assert await catalog.subtree_count(db_session, "electronics", include_self=True) == 5
    assert await catalog.subtree_count(db_session, "phones") == 0


async def test_ancestry_predicates(db_session, catalog):
    assert await catalog.is_ancestor_of(db_session, "electronics", "laptops")
    assert not await catalog.is_ancestor_of(db_session, "laptops", "electronics")
    assert not await catalog.is_ancestor_of(db_session, "books", "laptops")
    assert not await catalog.is_ancestor_of(db_session, "laptops", "laptops")
    assert await catalog.is_descendant_of(db_session, "laptops", "electronics")
    assert not await catalog.is_descendant_of(db_session, "electronics", "laptops")


async def test_unknown_ids_never_raise(db_session, catalog):
    assert await catalog.children(db_session, "ghost") == []
    assert await catalog.parent(db_session, "ghost") is None
    assert await catalog.ancestors(db_session, "ghost") == []
    assert await catalog.descendants(db_session, "ghost") == []
    assert await catalog.siblings(db_session, "ghost") == []
    assert await catalog.path(db_session, "ghost") == []
    assert await catalog.depth(db_session, "ghost") is None
    assert await catalog.subtree_count(db_session, "ghost") == 0
    assert await catalog.is_ancestor_of(db_session, "ghost", "laptops") is False
    assert await catalog.is_descendant_of(db_session, "laptops", "ghost") is False


async def test_traversal_on_empty_store(db_session, category_tree):
    assert await category_tree.roots(db_session) == []
    assert await category_tree.leaves(db_session) == []
    assert await category_tree.children(db_session) == []


async def test_traversal_refreshes_loaded_instances(db_session, catalog):
    laptops = await db_session.get(Category, "laptops")
    await db_session.execute(
        update(Category)
        .where(Category.id == "laptops")
        .values(name="notebooks")
        .execution_options(synchronize_session=False)
    )

    await catalog.children(db_session, "computers")

    assert laptops.name == "notebooks"


# ============================================================================
# Hook Tests
# ============================================================================


async def test_on_record_created_returns_interval(db_session, category_tree):
    db_session.add(Category(id="solo"))
    await db_session.flush()

    assert await category_tree.on_record_created(db_session, "solo") == NodeInterval(1, 2)


async def test_on_parent_changed_moves_subtree(db_session, catalog):
    interval = await catalog.on_parent_changed(db_session, "computers", "electronics", "books")

    assert interval is not None
    assert ids(await catalog.path(db_session, "laptops")) == ["books", "computers", "laptops"]
    assert ids(await catalog.leaves(db_session)) == ["phones", "laptops", "desktops"]


async def test_on_parent_changed_to_empty_string_makes_root(db_session, catalog):
    computers = await db_session.get(Category, "computers")
    computers.parent_id = ""

    await catalog.on_parent_changed(db_session, "computers", "electronics", "")

    assert ids(await catalog.roots(db_session)) == ["electronics", "books", "computers"]
    assert await catalog.depth(db_session, "computers") == 0
    assert await catalog.parent(db_session, "computers") is None


@pytest.mark.parametrize(("old", "new"), [("computers", "computers"), (None, ""), ("", None), (None, None)])
async def test_on_parent_changed_noop_for_equal_refs(db_session, catalog, old, new):
    before = await intervals_of(db_session, catalog)

    assert await catalog.on_parent_changed(db_session, "laptops", old, new) is None
    assert await intervals_of(db_session, catalog) == before


async def test_on_parent_changed_rejects_cycle(db_session, catalog):
    before = await intervals_of(db_session, catalog)

    with pytest.raises(CycleError):
        await catalog.on_parent_changed(db_session, "electronics", None, "laptops")

    assert await intervals_of(db_session, catalog) == before


async def test_on_record_removed(db_session, catalog):
    assert await catalog.on_record_removed(db_session, "computers") == 3
    assert ids(await catalog.descendants(db_session, "electronics")) == ["phones"]

    with pytest.raises(NodeNotFoundError):
        await catalog.on_record_removed(db_session, "computers")
    assert await catalog.on_record_removed(db_session, "computers", missing_ok=True) == 0


async def test_on_instance_changed_moves_on_parent_edit(db_session, catalog):
    phones = await db_session.get(Category, "phones")
    phones.parent_id = "computers"

    interval = await catalog.on_instance_changed(db_session, phones)

    assert interval == NodeInterval(phones.lft, phones.rgt)
    assert (await catalog.parent(db_session, "phones")).id == "computers"
    assert phones.parent_id == "computers"


async def test_on_instance_changed_ignores_other_edits(db_session, catalog):
    phones = await db_session.get(Category, "phones")
    phones.name = "mobile"

    assert await catalog.on_instance_changed(db_session, phones) is None


async def test_on_instance_changed_ignores_pending_instances(db_session, catalog):
    tablet = Category(id="tablets", parent_id="electronics")
    db_session.add(tablet)

    assert await catalog.on_instance_changed(db_session, tablet) is None


async def test_on_instance_changed_to_root_after_expire(db_session, catalog):
    laptops = await db_session.get(Category, "laptops")
    db_session.expire(laptops, ["parent_id"])
    laptops.parent_id = None

    interval = await catalog.on_instance_changed(db_session, laptops)

    assert interval is not None
    assert await catalog.parent(db_session, "laptops") is None
    assert ids(await catalog.roots(db_session)) == ["electronics", "books", "laptops"]
    assert ids(await catalog.children(db_session, "computers")) == ["desktops"]
    await catalog.check_integrity(db_session)


async def test_on_instance_changed_after_expire_moves_between_parents(db_session, catalog):
    phones = await db_session.get(Category, "phones")
    db_session.expire(phones, ["parent_id"])
    phones.parent_id = "books"

    await catalog.on_instance_changed(db_session, phones)

    assert ids(await catalog.path(db_session, "phones")) == ["books", "phones"]


async def test_on_instance_changed_after_expire_same_parent_is_noop(db_session, catalog):
    before = await intervals_of(db_session, catalog)
    phones = await db_session.get(Category, "phones")
    db_session.expire(phones, ["parent_id"])
    phones.parent_id = "electronics"

    assert await catalog.on_instance_changed(db_session, phones) is None
    assert await intervals_of(db_session, catalog) == before


async def test_hooks_are_logged(db_session, catalog, caplog):
    logger_name = "tree_index.core.database.hierarchy.engine"

    with caplog.at_level(logging.DEBUG, logger=logger_name):
        await catalog.on_parent_changed(db_session, "phones", "electronics", "books")
        with pytest.raises(CycleError):
            await catalog.on_parent_changed(db_session, "electronics", None, "laptops")

    hook_records = [r for r in caplog.records if r.name == logger_name]
    assert hook_records[0].operation == "tree.hook.parent_changed"
    assert hook_records[0].success is True
    assert hook_records[-1].levelno == logging.WARNING
    assert hook_records[-1].error_type == "CycleError"


async def test_check_integrity_passthrough(db_session, catalog):
    await catalog.check_integrity(db_session)
    await catalog.check_integrity(db_session, full=False)


# ============================================================================
# Alternate Model Tests
# ============================================================================


async def test_integer_keys(db_session, department_tree):
    await build_tree(db_session, department_tree, (1, None), (2, 1), (3, 2), (4, None))

    assert ids(await department_tree.roots(db_session)) == [1, 4]
    assert ids(await department_tree.path(db_session, 3)) == [1, 2, 3]

    await department_tree.on_parent_changed(db_session, 2, 1, 4)
    assert ids(await department_tree.descendants(db_session, 4)) == [2, 3]


def test_integer_parent_column_roots_only_match_null(department_tree):
    clause = department_tree.index.root_clause()

    assert str(clause) == "departments.parent_id IS NULL"


def test_empty_parent_can_be_disabled():
    tree = TreeEngine(Category, settings=TreeSettings(empty_parent_is_root=False))

    assert str(tree.index.root_clause()) == "categories.parent_id IS NULL"
    assert not tree.index.is_root_ref("")


async def test_custom_id_and_parent_columns(db_session, folder_tree):
    await build_tree(
        db_session,
        folder_tree,
        ("home", None),
        ("docs", "home"),
        ("music", "home"),
        ("drafts", "docs"),
    )

    assert ids(await folder_tree.path(db_session, "drafts")) == ["home", "docs", "drafts"]

    drafts = (await folder_tree.descendants(db_session, "docs"))[0]
    drafts.parent_code = "music"
    await folder_tree.on_instance_changed(db_session, drafts)

    assert ids(await folder_tree.children(db_session, "music")) == ["drafts"]
    assert (await folder_tree.index.get_node(db_session, "docs")).is_leaf

    assert await folder_tree.on_record_removed(db_session, "music") == 2
    await folder_tree.check_integrity(db_session)
