"""
Feature flags — draft / published / rollback snapshots.

Runtime reads only ever see the published snapshot. Operators edit the
draft, preview it, then publish; the previously published snapshot is
kept so a single rollback restores it.

Usage:
    flags = FeatureFlags({"broadcasts_enabled": True})
    flags.set_flag("broadcasts_enabled", False)   # draft only
    flags.get_flag("broadcasts_enabled", True)     # still True
    flags.publish()                                # now False
    flags.rollback()                               # True again
"""
from __future__ import annotations

import copy
import time
import structlog
from typing import Any, Optional

logger = structlog.get_logger()

DRAFT = "features:draft"
PUBLISHED = "features:published"
ROLLBACK = "features:rollback"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _empty_snapshot() -> dict[str, Any]:
    return {"ts": _now_ms(), "data": {}}


class FeatureFlags:
    """In-process key/value flag store with a publish workflow."""

    def __init__(self, initial: Optional[dict[str, bool]] = None):
        self._kv: dict[str, dict[str, Any]] = {}
        self.audit_log: list[dict[str, Any]] = []
        if initial:
            snap = {"ts": _now_ms(), "data": dict(initial)}
            self._kv[DRAFT] = copy.deepcopy(snap)
            self._kv[PUBLISHED] = copy.deepcopy(snap)

    def _get(self, key: str) -> dict[str, Any]:
        return copy.deepcopy(self._kv.get(key) or _empty_snapshot())

    def _set(self, key: str, snap: dict[str, Any]) -> None:
        self._kv[key] = copy.deepcopy(snap)

    # ── Runtime ───────────────────────────────────────────

    def get_flag(self, name: str, default: bool = False) -> bool:
        data = (self._kv.get(PUBLISHED) or {}).get("data", {})
        value = data.get(name)
        return default if value is None else bool(value)

    # ── Authoring ─────────────────────────────────────────

    def set_flag(self, name: str, value: bool) -> None:
        snap = self._get(DRAFT)
        snap["data"][name] = bool(value)
        snap["ts"] = _now_ms()
        self._set(DRAFT, snap)

    def preview(self) -> dict[str, Any]:
        return self._get(DRAFT)

    def publish(self, admin_id: Optional[str] = None) -> None:
        draft = self._get(DRAFT)
        current = self._get(PUBLISHED)
        self._set(ROLLBACK, current)
        self._set(PUBLISHED, draft)
        self._audit("publish", admin_id, current, draft)

    def rollback(self, admin_id: Optional[str] = None) -> None:
        published = self._get(PUBLISHED)
        previous = self._get(ROLLBACK)
        self._set(PUBLISHED, previous)
        self._set(ROLLBACK, published)
        self._audit("rollback", admin_id, published, previous)

    def _audit(self, action: str, admin_id: Optional[str],
               before: dict[str, Any], after: dict[str, Any]) -> None:
        self.audit_log.append({
            "admin_id": admin_id,
            "action": action,
            "from": before["data"],
            "to": after["data"],
            "ts": _now_ms(),
        })
        logger.info("feature_flags_" + action,
                    admin_id=admin_id,
                    before=before["data"],
                    after=after["data"])
