from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Optional

from .catalog import TierCatalog
from .errors import CatalogConfigError

logger = logging.getLogger(__name__)


class CatalogLoader:
    """Loads the tier/role catalog from config/access_catalog.json with reload support."""

    def __init__(self, config_path: str = "config/access_catalog.json") -> None:
        self._config_path = Path(config_path)
        self._lock = RLock()
        self._catalog: TierCatalog
        self.reload()

    @property
    def catalog(self) -> TierCatalog:
        with self._lock:
            return self._catalog

    def reload(self) -> None:
        """Reload config from disk. A failed reload keeps nothing half-applied."""
        raw = self._read_config_file()
        parsed = self._parse_config(raw)
        with self._lock:
            self._catalog = parsed
        logger.info(
            "Loaded access catalog",
            extra={"path": str(self._config_path), "tiers": list(parsed.tiers)},
        )

    def _read_config_file(self) -> dict:
        try:
            with self._config_path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except FileNotFoundError as exc:
            raise CatalogConfigError(f"catalog file not found: {self._config_path}") from exc
        except json.JSONDecodeError as exc:
            raise CatalogConfigError(f"catalog file is not valid JSON: {exc}") from exc
        if not isinstance(raw, dict):
            raise CatalogConfigError("access catalog must contain a top-level object")
        return raw

    @staticmethod
    def _parse_config(raw: Dict[str, Any]) -> TierCatalog:
        tiers = _require_name_list(raw, "tiers")
        access_levels = _require_name_list(raw, "access_levels")

        roles_raw = raw.get("roles")
        if not isinstance(roles_raw, dict) or not roles_raw:
            raise CatalogConfigError("access catalog must include a non-empty object named 'roles'")

        role_permissions: Dict[str, frozenset] = {}
        role_tiers: Dict[str, str] = {}
        role_access_levels: Dict[str, str] = {}
        for role, role_data in roles_raw.items():
            if not isinstance(role, str) or not role.strip():
                raise CatalogConfigError("each role key must be a non-empty string")
            if not isinstance(role_data, dict):
                raise CatalogConfigError(f"role '{role}' must be an object")
            permissions = role_data.get("permissions", [])
            if not isinstance(permissions, list) or not all(
                isinstance(p, str) and p.strip() for p in permissions
            ):
                raise CatalogConfigError(f"role '{role}' permissions must be a list of strings")
            role_permissions[role] = frozenset(p.strip() for p in permissions)
            if role_data.get("tier") is not None:
                role_tiers[role] = str(role_data["tier"])
            if role_data.get("access_level") is not None:
                role_access_levels[role] = str(role_data["access_level"])

        legacy_raw = raw.get("legacy_roles", {})
        if not isinstance(legacy_raw, dict):
            raise CatalogConfigError("legacy_roles must be an object")
        legacy_roles = {}
        for legacy_role, mapped in legacy_raw.items():
            if not isinstance(mapped, list):
                raise CatalogConfigError(f"legacy role '{legacy_role}' must map to a list of roles")
            legacy_roles[legacy_role] = frozenset(str(m) for m in mapped)

        forum = raw.get("forum", {})
        if not isinstance(forum, dict):
            raise CatalogConfigError("forum must be an object")

        caps_raw = raw.get("preview_caps_seconds", {})
        if not isinstance(caps_raw, dict):
            raise CatalogConfigError("preview_caps_seconds must be an object")
        caps = {tier: (None if cap is None else float(cap)) for tier, cap in caps_raw.items()}

        kwargs: Dict[str, Any] = {
            "tiers": tuple(tiers),
            "access_levels": tuple(access_levels),
            "role_permissions": role_permissions,
            "role_tiers": role_tiers,
            "role_access_levels": role_access_levels,
            "legacy_roles": legacy_roles,
            "tier_preview_caps": caps,
        }
        if "authenticated_access_level" in raw:
            kwargs["authenticated_access_level"] = str(raw["authenticated_access_level"])
        if "default_role" in raw:
            kwargs["default_role"] = str(raw["default_role"])
        if "warn_ratio" in raw:
            kwargs["warn_ratio"] = float(raw["warn_ratio"])
        if "poster_roles" in forum:
            kwargs["forum_poster_roles"] = frozenset(forum["poster_roles"])
        if "legacy_poster_roles" in forum:
            kwargs["legacy_forum_poster_roles"] = frozenset(forum["legacy_poster_roles"])
        if "moderator_roles" in forum:
            kwargs["moderator_roles"] = frozenset(forum["moderator_roles"])

        return TierCatalog(**kwargs)


def _require_name_list(raw: Dict[str, Any], key: str) -> list:
    values = raw.get(key)
    if not isinstance(values, list) or not values:
        raise CatalogConfigError(f"access catalog must include a non-empty list named '{key}'")
    for value in values:
        if not isinstance(value, str) or not value.strip():
            raise CatalogConfigError(f"'{key}' has invalid entry: {value!r}")
    return values


def load_catalog(config_path: Optional[str] = None) -> TierCatalog:
    return CatalogLoader(config_path or "config/access_catalog.json").catalog
