#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
# "requests",
# ]
# ///
"""Add or remove one tag on every item of a Jellyfin library."""
from __future__ import annotations

import sys
from typing import TYPE_CHECKING

import requests

from common import CONFIG_ERRORS, Client, Summary, apply_item_tag, tag_settings
from logger import logger

if TYPE_CHECKING:
    from common import Action


def tag_library(client: Client, library_key: str, action: Action, tag: str) -> Summary:
    library = client.find_library(library_key)
    logger.info("Processing library: %s", library.name)

    summary = Summary()
    for item, total in client.iter_items(library.id):
        apply_item_tag(client, item.id, item.name, action, tag, summary, total)
    return summary


def main() -> None:
    try:
        c = Client()
        library, action, tag = tag_settings(c._config)
        c.login()
        summary = tag_library(c, library, action, tag)
    except requests.exceptions.RequestException as exc:
        logger.error("Could not list items (check url/api_key/user): %s", exc)
        sys.exit(1)
    except CONFIG_ERRORS as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    summary.report()


if __name__ == "__main__":
    main()
