"""
Menu authorization engine.

Decides which menu entries a user sees and assembles them into a tree.
An entry is judged on its own required permissions:

- ANY: no requirements, or at least one held
- ALL: every requirement held
- NONE: no requirement held

A visible entry is shown only if its parent is shown too; a parent does not
need visible children. Siblings are ordered by (display_order, menu_key).
"""
from collections import defaultdict
from typing import AbstractSet, Dict, Iterable, Iterator, List, Tuple
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.menus.catalog import load_menu_catalog
from app.features.menus.models import MatchType, MenuEntry
from app.features.menus.schemas import MenuItem, MenuNode
from app.features.permissions.resolution import effective_permission_ids
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def matches(match_type: MatchType, required: Iterable[int], held: AbstractSet[int]) -> bool:
    required = set(required)
    if match_type == MatchType.ALL:
        return required <= held
    if match_type == MatchType.NONE:
        return not (required & held)
    return not required or bool(required & held)


def is_visible(entry: MenuEntry, held: AbstractSet[int]) -> bool:
    """Judge an entry on its own status and requirements."""
    return entry.is_visible_candidate and matches(entry.match_type, entry.required_permission_ids, held)


def _sort_key(entry: MenuEntry) -> Tuple[int, str]:
    return entry.display_order, entry.menu_key


def walk_visible(entries: Iterable[MenuEntry], held: AbstractSet[int]) -> Iterator[Tuple[MenuEntry, int]]:
    """
    Yield reachable visible entries in pre-order with their depth.

    ``entries`` must hold at most one entry per key. Entries under a parent
    that is hidden or absent are never reached.
    """
    visible = {entry.menu_key: entry for entry in entries if is_visible(entry, held)}

    roots: List[MenuEntry] = []
    children: Dict[str, List[MenuEntry]] = defaultdict(list)
    for entry in visible.values():
        if entry.parent_menu_key is None:
            roots.append(entry)
        elif entry.parent_menu_key in visible:
            children[entry.parent_menu_key].append(entry)

    stack = [(entry, 0) for entry in sorted(roots, key=_sort_key, reverse=True)]
    seen = set()
    while stack:
        entry, depth = stack.pop()
        if entry.menu_key in seen:
            continue
        seen.add(entry.menu_key)
        yield entry, depth
        stack.extend(
            (child, depth + 1)
            for child in sorted(children.get(entry.menu_key, []), key=_sort_key, reverse=True)
        )


def build_menu_tree(entries: Iterable[MenuEntry], held: AbstractSet[int]) -> List[MenuNode]:
    tree: List[MenuNode] = []
    nodes: Dict[str, MenuNode] = {}
    for entry, _depth in walk_visible(entries, held):
        node = MenuNode(
            id=entry.id,
            menu_key=entry.menu_key,
            menu_name=entry.menu_name,
            parent_menu_key=entry.parent_menu_key,
            route=entry.route,
            icon=entry.icon,
            display_order=entry.display_order,
        )
        nodes[entry.menu_key] = node
        if entry.parent_menu_key is None:
            tree.append(node)
        else:
            nodes[entry.parent_menu_key].children.append(node)
    return tree


def flatten_menu(entries: Iterable[MenuEntry], held: AbstractSet[int]) -> List[MenuItem]:
    return [
        MenuItem(
            id=entry.id,
            menu_key=entry.menu_key,
            menu_name=entry.menu_name,
            parent_menu_key=entry.parent_menu_key,
            route=entry.route,
            icon=entry.icon,
            display_order=entry.display_order,
            depth=depth,
        )
        for entry, depth in walk_visible(entries, held)
    ]


async def _user_menu(db: AsyncSession, user: User) -> Tuple[List[MenuEntry], frozenset[int]]:
    held = await effective_permission_ids(db, user)
    entries = await load_menu_catalog(db, user.tenant_id)
    return entries, held


async def visible_menu(db: AsyncSession, user: User) -> List[MenuNode]:
    """The menu tree ``user`` may see."""
    entries, held = await _user_menu(db, user)
    tree = build_menu_tree(entries, held)
    log.debug(f"Built menu for user {user.id}: {len(tree)} root entries")
    return tree


async def menus_for_user(db: AsyncSession, user: User) -> List[MenuItem]:
    """The visible menu flattened in pre-order, parents before children."""
    entries, held = await _user_menu(db, user)
    return flatten_menu(entries, held)


async def check_menu_access(db: AsyncSession, user: User, menu_keys: Iterable[str]) -> Dict[str, bool]:
    """Map each menu key to whether it is reachable in ``user``'s menu."""
    entries, held = await _user_menu(db, user)
    reachable = {entry.menu_key for entry, _depth in walk_visible(entries, held)}
    return {key: key in reachable for key in dict.fromkeys(menu_keys)}
