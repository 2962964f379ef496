"""
Static configuration for the access gate.

Every enforcement surface reads the override identity and the catalog path
from here so the three surfaces cannot drift apart.

Configuration (environment variables):
- ACCESS_OVERRIDE_EMAIL:        Operator identity that always resolves to admin (default: unset)
- ACCESS_CATALOG_PATH:          Path to the tier/role catalog JSON (default: "config/access_catalog.json")
- REDIS_URL:                    Redis connection URL for caches and consumption state (default: unset)
- ACCESS_SIGN_IN_PATH:          Redirect target for anonymous callers (default: "/login")
- ACCESS_LANDING_PATH:          Redirect target for principals lacking a role (default: "/dashboard")
- ACCESS_ADMIN_HOME_PATH:       Home page for admins hitting the sign-in page (default: "/admin")
- ACCESS_PRINCIPAL_CACHE_TTL:   Cross-request principal cache TTL in seconds, 0 disables (default: "0")
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_CATALOG_PATH = "config/access_catalog.json"


def _get_env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


@dataclass(frozen=True)
class GateSettings:
    override_email: Optional[str] = None
    catalog_path: str = DEFAULT_CATALOG_PATH
    redis_url: Optional[str] = None
    sign_in_path: str = "/login"
    landing_path: str = "/dashboard"
    admin_home_path: str = "/admin"
    principal_cache_ttl: int = 0

    def __post_init__(self) -> None:
        normalized = normalize_email(self.override_email)
        object.__setattr__(self, "override_email", normalized or None)
        if self.principal_cache_ttl < 0:
            raise ValueError("principal_cache_ttl must be >= 0")

    @classmethod
    def from_env(cls) -> "GateSettings":
        return cls(
            override_email=_get_env("ACCESS_OVERRIDE_EMAIL") or None,
            catalog_path=_get_env("ACCESS_CATALOG_PATH", DEFAULT_CATALOG_PATH),
            redis_url=_get_env("REDIS_URL") or None,
            sign_in_path=_get_env("ACCESS_SIGN_IN_PATH", "/login"),
            landing_path=_get_env("ACCESS_LANDING_PATH", "/dashboard"),
            admin_home_path=_get_env("ACCESS_ADMIN_HOME_PATH", "/admin"),
            principal_cache_ttl=int(_get_env("ACCESS_PRINCIPAL_CACHE_TTL", "0")),
        )

    def is_override_email(self, email: Optional[str]) -> bool:
        if not self.override_email:
            return False
        return normalize_email(email) == self.override_email
