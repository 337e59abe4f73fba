from __future__ import annotations

import json
from dataclasses import dataclass, field
from functools import cached_property, partial
from pathlib import Path
from typing import TYPE_CHECKING

import requests
import tomllib

from logger import logger, set_level


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator
    from typing import Any, Literal, Self

    Action = Literal["add", "remove"]


PAGE_SIZE = 200
ACTIONS = ("add", "remove")
SERIES_TYPES = ("Series", "Season", "Episode")

# Raised while loading or validating config.toml.
CONFIG_ERRORS = (FileNotFoundError, tomllib.TOMLDecodeError, KeyError, ValueError)


def normalize_tag(tag: str) -> str:
    tag = tag.strip()
    if not tag:
        raise ValueError("Tag cannot be empty.")
    return tag


def normalize_tags(tags: Iterable[str] | None) -> frozenset[str]:
    """Trim every tag and drop blanks, collapsing duplicates."""
    if not tags:
        return frozenset()
    return frozenset(tag.strip() for tag in tags if tag and tag.strip())


def reconcile(
    current: Iterable[str], action: Action, tag: str
) -> tuple[frozenset[str], bool]:
    """Apply a single add/remove to ``current``.

    Returns the resulting tag set and whether it differs from ``current``.
    Raises ValueError for a blank tag or an unknown action.
    """
    tag = normalize_tag(tag)
    before = normalize_tags(current)

    if action == "add":
        after = before | {tag}
    elif action == "remove":
        after = before - {tag}
    else:
        raise ValueError(f"Unknown action {action!r}, expected one of {ACTIONS}")

    return after, sorted(after) != sorted(before)


def paginate(
    fetch_page: Callable[[int, int], tuple[list[Any], int | None]],
    page_size: int = PAGE_SIZE,
) -> Iterator[tuple[Any, int | None]]:
    """Yield ``(row, total)`` for every row of an offset-paged collection.

    Stops on an empty or short page. ``total`` is whatever the server
    advertised and is only meant for progress output.
    """
    start = 0
    while True:
        rows, total = fetch_page(start, page_size)
        yield from ((row, total) for row in rows)

        if len(rows) < page_size:
            return
        start += len(rows)


@dataclass
class Library:
    id: str
    name: str
    collection_type: str | None = None

    @classmethod
    def from_json(cls, json) -> Self:
        # Views carry "Id", virtual folders carry "ItemId".
        return cls(
            id=json.get("Id") or json["ItemId"],
            name=json["Name"],
            collection_type=json.get("CollectionType"),
        )


@dataclass
class Item:
    id: str
    name: str
    type: str
    tags: frozenset[str] = frozenset()
    series_id: str | None = None
    series_name: str | None = None

    @classmethod
    def from_json(cls, json) -> Self:
        return cls(
            id=json["Id"],
            name=json.get("Name") or "(no name)",
            type=json.get("Type", ""),
            tags=normalize_tags(json.get("Tags")),
            series_id=json.get("SeriesId") or None,
            series_name=json.get("SeriesName") or None,
        )

    def __str__(self) -> str:
        return f"{self.name} ({self.id})"


@dataclass
class User:
    id: str
    name: str
    # None when the server did not send a policy document.
    policy: dict[str, Any] | None = None

    @classmethod
    def from_json(cls, json) -> Self:
        return cls(id=json["Id"], name=json["Name"], policy=json.get("Policy"))

    def __str__(self) -> str:
        return f"{self.name} ({self.id})"


@dataclass
class SeriesTargets:
    targets: dict[str, str] = field(default_factory=dict)
    orphans: list[Item] = field(default_factory=list)


def resolve_series_targets(items: Iterable[Item]) -> SeriesTargets:
    """Collapse a TV listing onto the Series that own it.

    Seasons and Episodes are redirected to their SeriesId, anything that is
    not part of a show is dropped. Records without a SeriesId end up in
    ``orphans``.
    """
    resolved = SeriesTargets()
    for item in items:
        if item.type == "Series":
            resolved.targets[item.id] = item.name
        elif item.type in ("Season", "Episode"):
            if item.series_id is None:
                resolved.orphans.append(item)
                continue
            resolved.targets[item.series_id] = item.series_name or resolved.targets.get(
                item.series_id, item.series_id
            )
    return resolved


@dataclass
class PolicyChange:
    allow_add: frozenset[str] = frozenset()
    allow_remove: frozenset[str] = frozenset()
    block_add: frozenset[str] = frozenset()
    block_remove: frozenset[str] = frozenset()
    # None leaves library access untouched.
    enable_all_folders: bool | None = None
    enabled_folders: tuple[str, ...] = ()

    @classmethod
    def from_config(cls, config, folder_ids: list[str] | None = None) -> Self:
        def tags(key: str) -> frozenset[str]:
            return frozenset(normalize_tag(tag) for tag in config.get(key, []))

        enable_all: bool | None = None
        if config.get("all_folders"):
            enable_all = True
            folder_ids = []
        elif folder_ids is not None:
            enable_all = False

        return cls(
            allow_add=tags("allow_add"),
            allow_remove=tags("allow_remove"),
            block_add=tags("block_add"),
            block_remove=tags("block_remove"),
            enable_all_folders=enable_all,
            enabled_folders=tuple(folder_ids or ()),
        )

    def tag_changes(self) -> Iterator[tuple[str, Action, str]]:
        for key, adds, removes in (
            ("AllowedTags", self.allow_add, self.allow_remove),
            ("BlockedTags", self.block_add, self.block_remove),
        ):
            for tag in sorted(adds):
                yield key, "add", tag
            for tag in sorted(removes):
                yield key, "remove", tag

    @property
    def is_empty(self) -> bool:
        return self.enable_all_folders is None and not any(self.tag_changes())


def _apply_folders(policy: dict[str, Any], change: PolicyChange) -> bool:
    if change.enable_all_folders is None:
        return False

    changed = bool(policy.get("EnableAllFolders")) != change.enable_all_folders or sorted(
        policy.get("EnabledFolders") or []
    ) != sorted(change.enabled_folders)
    policy["EnableAllFolders"] = change.enable_all_folders
    policy["EnabledFolders"] = list(change.enabled_folders)
    return changed


def apply_policy_change(
    policy: dict[str, Any], change: PolicyChange
) -> tuple[dict[str, Any], bool]:
    """Merge ``change`` into a fully-read policy.

    Returns the new policy document and whether anything differs from the
    one that was read.
    """
    new_policy = dict(policy)
    changed = False

    for key, action, tag in change.tag_changes():
        tags, tag_changed = reconcile(new_policy.get(key) or (), action, tag)
        if tag_changed:
            new_policy[key] = sorted(tags)
            changed = True

    changed = _apply_folders(new_policy, change) or changed
    return new_policy, changed


def fallback_policy(
    baseline: dict[str, Any], change: PolicyChange
) -> tuple[dict[str, Any], bool]:
    """Build a policy payload when the user's full policy could not be read.

    Only additions and the library access replacement are applied on top of
    ``baseline``. Removals are dropped since the current lists are unknown.
    The payload should only be sent when the returned flag is true,
    otherwise it would replace the policy with nothing new.
    """
    payload = dict(baseline)
    changed = False

    for key, action, tag in change.tag_changes():
        if action == "remove":
            logger.warning("  ! current %s unknown, not removing %r", key, tag)
            continue
        tags, tag_changed = reconcile(payload.get(key) or (), action, tag)
        if tag_changed:
            payload[key] = sorted(tags)
            changed = True

    changed = _apply_folders(payload, change) or changed
    return payload, changed


@dataclass
class Summary:
    processed: int = 0
    changed: int = 0
    failed: int = 0
    skipped: int = 0

    def report(self) -> None:
        logger.info("Done.")
        logger.info("Processed: %d", self.processed)
        logger.info("Changed:   %d", self.changed)
        logger.info("Failed:    %d", self.failed)
        if self.skipped:
            logger.info("Skipped:   %d", self.skipped)


def tag_settings(config) -> tuple[str, Action, str]:
    """Read and validate the ``[tags]`` section."""
    section = config["tags"]
    action = section["action"].strip().lower()
    if action not in ACTIONS:
        raise ValueError(f"[tags] action must be one of {ACTIONS}, got {action!r}")
    return str(section["library"]), action, normalize_tag(section["tag"])


def _find_library(libraries: list[Library], key: str) -> Library:
    for library in libraries:
        if key in (library.id, library.name):
            return library
    names = ", ".join(library.name for library in libraries) or "none"
    raise ValueError(f"No library named {key!r} (available: {names})")


class InvalidResponse(requests.exceptions.RequestException):
    """The server answered, but a record lacks a field we rely on."""


def _from_json(cls, json):
    try:
        return cls.from_json(json)
    except KeyError as exc:
        raise InvalidResponse(f"{cls.__name__} record without {exc}") from exc


class Client:
    user_id: str | None = None

    def __init__(self, config_path: Path = Path("config.toml")) -> None:
        self.session = requests.Session()

        with config_path.open("rb") as config:
            self._config = tomllib.load(config)

        if level := self._config.get("logging", {}).get("level"):
            set_level(level)

    def login(self) -> None:
        api_key = self._jellyfin["api_key"]
        self.session.headers.update(
            {
                "Authorization": f"MediaBrowser Token={api_key}",
                "X-Emby-Token": api_key,
            }
        )

        self.user_id = self._jellyfin.get("user_id")
        if not self.user_id and (name := self._jellyfin.get("user")):
            for user in self.users():
                if user.name == name:
                    self.user_id = user.id
                    break
            else:
                raise ValueError(f"No Jellyfin user named {name!r}")

    @property
    def _jellyfin(self) -> dict[str, Any]:
        return self._config["jellyfin"]

    @property
    def url(self) -> str:
        return self._jellyfin["url"]

    @property
    def page_size(self) -> int:
        return int(self._jellyfin.get("page_size", PAGE_SIZE))

    @property
    def timeout(self) -> float | None:
        return self._jellyfin.get("timeout")

    @property
    def _user_path(self) -> str:
        if not self.user_id:
            raise ValueError("Set [jellyfin] user_id or user in config.toml")
        return f"Users/{self.user_id}"

    def _endpoint(self, path: str) -> str:
        return f"{self.url.rstrip('/')}/{path.lstrip('/')}"

    def _get(self, path: str, params: dict[str, Any] | None = None):
        resp = self.session.get(self._endpoint(path), params=params, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def _post(self, path: str, payload: dict[str, Any]) -> None:
        resp = self.session.post(
            self._endpoint(path),
            data=json.dumps(payload),
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
        resp.raise_for_status()

    @cached_property
    def libraries(self) -> list[Library]:
        resp = self._get(f"{self._user_path}/Views")
        return [_from_json(Library, view) for view in resp.get("Items") or []]

    @cached_property
    def virtual_folders(self) -> list[Library]:
        return [_from_json(Library, folder) for folder in self._get("Library/VirtualFolders")]

    def find_library(self, key: str) -> Library:
        return _find_library(self.libraries, key)

    def find_folder(self, key: str) -> Library:
        return _find_library(self.virtual_folders, key)

    def items_page(
        self,
        library_id: str,
        start: int,
        limit: int,
        fields: Iterable[str] = ("Tags", "Name"),
        include_types: Iterable[str] | None = None,
    ) -> tuple[list[dict[str, Any]], int | None]:
        params = {
            "ParentId": library_id,
            "Recursive": "true",
            "StartIndex": start,
            "Limit": limit,
            "Fields": ",".join(fields),
            "EnableTotalRecordCount": "true",
        }
        if include_types:
            params["IncludeItemTypes"] = ",".join(include_types)

        resp = self._get(f"{self._user_path}/Items", params=params)
        return resp.get("Items") or [], resp.get("TotalRecordCount")

    def iter_items(
        self,
        library_id: str,
        fields: Iterable[str] = ("Tags", "Name"),
        include_types: Iterable[str] | None = None,
    ) -> Iterator[tuple[Item, int | None]]:
        fetch_page = partial(
            self.items_page, library_id, fields=tuple(fields), include_types=include_types
        )
        for row, total in paginate(fetch_page, self.page_size):
            yield _from_json(Item, row), total

    def item(self, item_id: str) -> dict[str, Any]:
        return self._get(f"{self._user_path}/Items/{item_id}")

    def update_item(self, item_id: str, payload: dict[str, Any]) -> None:
        self._post(f"Items/{item_id}", payload)

    def users(self) -> list[User]:
        return [_from_json(User, user) for user in self._get("Users")]

    def user(self, user_id: str) -> User:
        return _from_json(User, self._get(f"Users/{user_id}"))

    def update_policy(self, user_id: str, policy: dict[str, Any]) -> None:
        self._post(f"Users/{user_id}/Policy", policy)


def apply_item_tag(
    client: Client,
    item_id: str,
    name: str,
    action: Action,
    tag: str,
    summary: Summary,
    total: int | None = None,
) -> bool:
    """Fetch one item, apply the tag change and write it back if needed.

    Failures are counted in ``summary`` rather than raised. Returns whether
    the item was updated.
    """
    summary.processed += 1
    logger.info("[%d/%s] %s (%s)", summary.processed, total or "?", name, item_id)

    try:
        full = client.item(item_id)
    except requests.exceptions.RequestException as exc:
        logger.error("  ! fetch failed: %s", exc)
        summary.failed += 1
        return False

    new_tags, changed = reconcile(full.get("Tags") or (), action, tag)
    if not changed:
        logger.debug("  - no change")
        return False

    try:
        client.update_item(item_id, {**full, "Tags": sorted(new_tags)})
    except requests.exceptions.RequestException as exc:
        logger.error("  x update failed: %s", exc)
        summary.failed += 1
        return False

    logger.info("  updated -> %s", ", ".join(sorted(new_tags)))
    summary.changed += 1
    return True
