#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
# "requests",
# ]
# ///
"""Add or remove one tag on every Series of a TV library.

Seasons and Episodes are never edited directly, the tag goes on the Series
that owns them.
"""
from __future__ import annotations

import sys
from typing import TYPE_CHECKING

import requests

from common import (
    CONFIG_ERRORS,
    SERIES_TYPES,
    Client,
    Summary,
    apply_item_tag,
    resolve_series_targets,
    tag_settings,
)
from logger import logger

if TYPE_CHECKING:
    from common import Action

SERIES_FIELDS = ("Name", "SeriesId", "SeriesName")


def tag_series(client: Client, library_key: str, action: Action, tag: str) -> Summary:
    library = client.find_library(library_key)
    logger.info("Scanning TV library: %s", library.name)

    resolved = resolve_series_targets(
        item
        for item, _total in client.iter_items(
            library.id, fields=SERIES_FIELDS, include_types=SERIES_TYPES
        )
    )
    for orphan in resolved.orphans:
        logger.warning("Skipping %s %s: no SeriesId", orphan.type, orphan)

    summary = Summary(skipped=len(resolved.orphans))
    if not resolved.targets:
        logger.info("No series found in %s", library.name)
        return summary

    total = len(resolved.targets)
    for series_id, name in resolved.targets.items():
        apply_item_tag(client, series_id, name, action, tag, summary, total)
    return summary


def main() -> None:
    try:
        c = Client()
        library, action, tag = tag_settings(c._config)
        c.login()
        summary = tag_series(c, library, action, tag)
    except requests.exceptions.RequestException as exc:
        logger.error("Could not list items (check url/api_key/user): %s", exc)
        sys.exit(1)
    except CONFIG_ERRORS as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    summary.report()


if __name__ == "__main__":
    main()
