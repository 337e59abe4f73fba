#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = [
# "requests",
# ]
# ///
"""Adjust allowed/blocked tags and library access for Jellyfin users."""
from __future__ import annotations

import sys

import requests

from common import (
    CONFIG_ERRORS,
    Client,
    PolicyChange,
    Summary,
    User,
    apply_policy_change,
    fallback_policy,
)
from logger import logger


def select_users(client: Client, names: list[str]) -> list[User]:
    users = client.users()
    if not names:
        return users

    selected = [user for user in users if user.name in names]
    for name in set(names) - {user.name for user in selected}:
        logger.warning("No user named %r", name)
    return selected


def read_policy_change(client: Client, section) -> PolicyChange:
    folder_ids = None
    if "folders" in section and not section.get("all_folders"):
        folder_ids = [client.find_folder(name).id for name in section["folders"]]
    return PolicyChange.from_config(section, folder_ids)


def update_policies(client: Client, users: list[User], change: PolicyChange) -> Summary:
    summary = Summary()
    for user in users:
        summary.processed += 1
        logger.info("[%d/%d] %s", summary.processed, len(users), user)

        try:
            policy = client.user(user.id).policy
        except requests.exceptions.RequestException as exc:
            logger.warning("  ! could not read policy (%s), applying additions only", exc)
            policy = None
        else:
            if policy is None:
                logger.warning("  ! no policy returned, applying additions only")

        if policy is None:
            payload, changed = fallback_policy(user.policy or {}, change)
        else:
            payload, changed = apply_policy_change(policy, change)
        if not changed:
            logger.info("  - no change")
            continue

        try:
            client.update_policy(user.id, payload)
        except requests.exceptions.RequestException as exc:
            logger.error("  x update failed: %s", exc)
            summary.failed += 1
            continue

        logger.info(
            "  updated -> allowed: %s; blocked: %s",
            ", ".join(payload.get("AllowedTags") or []) or "-",
            ", ".join(payload.get("BlockedTags") or []) or "-",
        )
        summary.changed += 1
    return summary


def main() -> None:
    try:
        c = Client()
        c.login()
        section = c._config.get("policy", {})
        change = read_policy_change(c, section)
        if change.is_empty:
            logger.info("Nothing to change in [policy].")
            return
        users = select_users(c, section.get("users", []))
    except requests.exceptions.RequestException as exc:
        logger.error("Could not list users (check url/api_key): %s", exc)
        sys.exit(1)
    except CONFIG_ERRORS as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    update_policies(c, users, change).report()


if __name__ == "__main__":
    main()
