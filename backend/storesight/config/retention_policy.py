"""
Retention policy configuration loader.

Loads cleanup limits from config/retention_policy.yml. Missing files or
keys fall back to built-in defaults, so the service starts without the
file present.

Consumers:
  - NotificationService: age and per-shop count limits
  - ShopService: session inactivity, cleanup window, per-shop session cap
  - DataPrivacyService: audit log retention

Usage:
    from storesight.config.retention_policy import get_retention_policy

    policy = get_retention_policy()
    policy.notifications.retention_days
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "retention_policy.yml"


@dataclass(frozen=True)
class NotificationPolicy:
    cleanup_enabled: bool = True
    retention_days: int = 30
    max_read_per_shop: int = 50
    max_unread_per_shop: int = 100
    cleanup_threshold: int = 150


@dataclass(frozen=True)
class SessionPolicy:
    inactivity_hours: int = 4
    cleanup_days: int = 2
    max_per_shop: int = 5


@dataclass(frozen=True)
class AuditPolicy:
    retention_days: int = 365


@dataclass(frozen=True)
class RetentionPolicy:
    notifications: NotificationPolicy = field(default_factory=NotificationPolicy)
    sessions: SessionPolicy = field(default_factory=SessionPolicy)
    audit: AuditPolicy = field(default_factory=AuditPolicy)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "RetentionPolicy":
        return cls(
            notifications=_build(NotificationPolicy, raw.get("notifications")),
            sessions=_build(SessionPolicy, raw.get("sessions")),
            audit=_build(AuditPolicy, raw.get("audit")),
        )


def _build(section_cls, raw: Optional[Dict[str, Any]]):
    """Build a policy section, ignoring unknown keys."""
    if not raw:
        return section_cls()
    known = {f.name for f in fields(section_cls)}
    unknown = set(raw) - known
    if unknown:
        logger.warning(
            "Ignoring unknown retention policy keys",
            extra={"section": section_cls.__name__, "keys": sorted(unknown)},
        )
    return section_cls(**{k: v for k, v in raw.items() if k in known})


def _resolve_path(config_path: Optional[str] = None) -> Optional[Path]:
    if config_path:
        return Path(config_path)

    env_path = os.getenv("RETENTION_POLICY_PATH")
    if env_path:
        return Path(env_path)

    candidates = [
        # repo root when running from backend/
        Path(__file__).parent.parent.parent.parent / "config" / CONFIG_FILENAME,
        Path(os.getcwd()) / "config" / CONFIG_FILENAME,
        Path(os.getcwd()) / ".." / "config" / CONFIG_FILENAME,
    ]
    for p in candidates:
        resolved = p.resolve()
        if resolved.exists():
            return resolved
    return None


def load_retention_policy(config_path: Optional[str] = None) -> RetentionPolicy:
    """Read the policy from YAML, or return defaults when no file is found."""
    path = _resolve_path(config_path)
    if path is None:
        logger.info("No %s found, using default retention policy", CONFIG_FILENAME)
        return RetentionPolicy()

    logger.info("Loading retention policy from %s", path)
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}
    return RetentionPolicy.from_dict(raw)


_policy: Optional[RetentionPolicy] = None
_policy_lock = Lock()


def get_retention_policy() -> RetentionPolicy:
    """Get the process-wide retention policy singleton."""
    global _policy
    if _policy is None:
        with _policy_lock:
            if _policy is None:
                _policy = load_retention_policy()
    return _policy


def reset_retention_policy() -> None:
    """Drop the cached policy so the next call re-reads the file."""
    global _policy
    with _policy_lock:
        _policy = None
