from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from access_gate.app import create_app
from access_gate.audit import AccessAuditLogger, AuditAction
from access_gate.catalog import TierCatalog
from access_gate.engine import AccessDecisionEngine
from access_gate.guard import require_access
from access_gate.models import Action, ContentKind, RawIdentity
from access_gate.resolver import PrincipalResolver
from access_gate.settings import GateSettings
from access_gate.stores import InMemoryConsumptionStore, InMemoryContentStore, InMemoryIdentityStore
from factories import article, thread, video

REPO_CATALOG = str(Path(__file__).resolve().parent.parent / "config" / "access_catalog.json")
OVERRIDE_EMAIL = "operator@example.com"

TOKENS = {
    "t-user": ("u-user", "user@example.com", ["user"], None),
    "t-premium": ("u-premium", "premium@example.com", ["premium_user"], None),
    "t-admin": ("u-admin", "admin@example.com", ["admin"], None),
    "t-op": ("u-op", OVERRIDE_EMAIL, [], None),
    "t-paid": ("u-paid", "paid@example.com", [], "paid"),
}


class _FailingIdentityStore(InMemoryIdentityStore):
    def get_role_assignments(self, identity_id):
        raise ConnectionError("identity store down")


def _identity_store(cls=InMemoryIdentityStore):
    store = cls()
    for token, (user_id, email, roles, legacy) in TOKENS.items():
        store.add_identity(token, RawIdentity(user_id, email))
        store.assign_roles(user_id, roles)
        store.set_legacy_role(user_id, legacy)
    return store


def _content_store():
    return InMemoryContentStore([
        article("free-1", "free"),
        article("partial-1", "partial"),
        article("premium-1", "premium"),
        video("clip", tier="premium", cap=300),
        video("masterclass", tier="enterprise", cap=None),
        video("open", tier="free", cap=None),
        thread("general"),
    ])


def _settings():
    return GateSettings(override_email=OVERRIDE_EMAIL, catalog_path=REPO_CATALOG)


@pytest.fixture
def events():
    return []


@pytest.fixture
def client(events):
    app = create_app(
        identity_store=_identity_store(),
        content_store=_content_store(),
        consumption_store=InMemoryConsumptionStore(),
        settings=_settings(),
        audit=AccessAuditLogger(events.append),
    )
    return TestClient(app, follow_redirects=False)


def _auth(token):
    return {"Authorization": f"Bearer {token}"} if token else {}


# -- Route middleware -------------------------------------------------------

def test_anonymous_protected_route_redirects_to_sign_in(client, events):
    response = client.get("/admin")
    assert response.status_code == 303
    assert response.headers["location"] == "/login?redirect=%2Fadmin"
    assert events[-1].action is AuditAction.ACCESS_DENIED
    assert events[-1].surface == "middleware"


def test_principal_lacking_role_redirects_to_landing(client):
    response = client.get("/admin/users", headers=_auth("t-user"))
    assert response.status_code == 303
    assert response.headers["location"] == "/dashboard"


def test_admin_reaches_admin_page(client):
    response = client.get("/admin", headers=_auth("t-admin"))
    assert response.status_code == 200
    assert response.json()["page"] == "admin"


def test_dashboard_requires_any_signed_in_principal(client):
    assert client.get("/dashboard").status_code == 303
    assert client.get("/dashboard", headers=_auth("t-user")).status_code == 200


def test_signed_in_users_are_sent_away_from_sign_in_page(client):
    assert client.get("/login").status_code == 200
    assert client.get("/login", headers=_auth("t-admin")).headers["location"] == "/admin"
    assert client.get("/login", headers=_auth("t-user")).headers["location"] == "/dashboard"


def test_content_page_redirects_only_when_blocked(client):
    blocked = client.get("/education/premium-1")
    assert blocked.status_code == 303
    assert blocked.headers["location"] == "/login?redirect=%2Feducation%2Fpremium-1"

    preview = client.get("/education/premium-1", headers=_auth("t-user"))
    assert preview.status_code == 200
    assert preview.json()["isPreview"] is True
    assert preview.json()["prompt"]["ctaLink"] == "/membership/upgrade"


def test_cookie_token_is_accepted(client):
    client.cookies.set("access_token", "t-admin")
    assert client.get("/admin").status_code == 200


# -- API guard --------------------------------------------------------------

def test_anonymous_api_denial_is_401_with_reason(client):
    response = client.get("/api/articles/premium-1")
    assert response.status_code == 401
    assert response.json() == {
        "error": "Authentication required",
        "reason": "not_authenticated",
        "requiredAction": "sign_in",
    }


def test_role_denial_is_403_with_reason(client):
    response = client.post("/api/forum/threads/general/posts", json={"body": "hi"}, headers=_auth("t-user"))
    assert response.status_code == 403
    assert response.json() == {
        "error": "Access denied",
        "reason": "insufficient_role",
        "requiredAction": "upgrade",
    }


def test_unknown_content_is_404_not_denial(client):
    for token in (None, "t-user", "t-admin"):
        response = client.get("/api/articles/missing", headers=_auth(token))
        assert response.status_code == 404
        assert response.json() == {"error": "Not found", "reason": "content_not_found", "requiredAction": None}


def test_identity_store_failure_is_503_on_every_surface(events):
    app = create_app(
        identity_store=_identity_store(_FailingIdentityStore),
        content_store=_content_store(),
        settings=_settings(),
        audit=AccessAuditLogger(events.append),
    )
    client = TestClient(app, follow_redirects=False)

    assert client.get("/api/articles/free-1", headers=_auth("t-user")).status_code == 503
    page = client.get("/admin", headers=_auth("t-user"))
    assert page.status_code == 503
    assert page.json()["error"] == "IDENTITY_UNAVAILABLE"
    # Anonymous callers never touch the role lookup.
    assert client.get("/api/articles/free-1").status_code == 200


def test_api_preview_returns_truncated_body(client):
    full = client.get("/api/articles/premium-1", headers=_auth("t-premium")).json()
    preview = client.get("/api/articles/premium-1", headers=_auth("t-user")).json()
    assert full["isPreview"] is False
    assert preview["isPreview"] is True
    assert full["body"].startswith(preview["body"])
    assert full["body"] != preview["body"]


def test_video_progress_runs_through_preview_into_exhaustion(client, events):
    headers = _auth("t-user")
    assert client.get("/api/videos/clip", headers=headers).json()["isPreview"] is True

    report = client.post("/api/videos/clip/progress", json={"watchedSeconds": 120}, headers=headers)
    assert report.status_code == 200
    assert report.json()["allowed"] is True

    client.post("/api/videos/clip/progress", json={"watchedSeconds": 301}, headers=headers)
    response = client.get("/api/videos/clip", headers=headers)
    assert response.status_code == 403
    assert response.json()["reason"] == "preview_exhausted"
    assert response.json()["requiredAction"] == "upgrade"

    page = client.get("/videos/clip", headers=headers)
    assert page.status_code == 303
    assert page.headers["location"] == "/dashboard"


def test_invalid_progress_report_is_rejected(client):
    response = client.post("/api/videos/clip/progress", json={"watchedSeconds": -5}, headers=_auth("t-user"))
    assert response.status_code == 422


def test_admin_api_requires_admin_panel_permission(client):
    assert client.get("/api/admin/overview").status_code == 401
    assert client.get("/api/admin/overview", headers=_auth("t-premium")).status_code == 403
    assert client.get("/api/admin/overview", headers=_auth("t-admin")).status_code == 200


# -- Scenarios --------------------------------------------------------------

def test_override_identity_has_full_access_everywhere(client, events):
    headers = _auth("t-op")
    me = client.get("/api/access/me", headers=headers).json()
    assert "admin" in me["roles"]
    assert me["overrideIdentity"] is True

    assert client.get("/api/articles/premium-1", headers=headers).json()["isPreview"] is False
    assert client.get("/api/videos/masterclass", headers=headers).json()["allowed"] is True
    assert client.post("/api/forum/threads/general/posts", json={"body": "hi"}, headers=headers).status_code == 201
    moderation = client.post(
        "/api/forum/threads/general/moderation", json={"postId": "p1", "action": "hide"}, headers=headers
    )
    assert moderation.status_code == 200
    assert client.get("/admin", headers=headers).status_code == 200
    assert AuditAction.OVERRIDE_IDENTITY_USED in [e.action for e in events]


def test_legacy_paid_member_can_post_to_forum(client):
    response = client.post("/api/forum/threads/general/posts", json={"body": "hello"}, headers=_auth("t-paid"))
    assert response.status_code == 201
    assert response.json() == {"threadId": "general", "authorId": "u-paid", "accepted": True}


def test_anonymous_me_is_not_authenticated(client):
    assert client.get("/api/access/me").json()["authenticated"] is False


# -- Three-surface agreement ------------------------------------------------

PAGE_PATHS = {ContentKind.ARTICLE: "/education/{}", ContentKind.VIDEO: "/videos/{}"}
API_PATHS = {ContentKind.ARTICLE: "/api/articles/{}", ContentKind.VIDEO: "/api/videos/{}"}
PAIRS = [
    (token, kind, content_id)
    for token in (None, "t-user", "t-premium", "t-admin", "t-paid")
    for kind, content_id in [
        (ContentKind.ARTICLE, "free-1"),
        (ContentKind.ARTICLE, "partial-1"),
        (ContentKind.ARTICLE, "premium-1"),
        (ContentKind.VIDEO, "clip"),
        (ContentKind.VIDEO, "masterclass"),
        (ContentKind.VIDEO, "open"),
    ]
]


@pytest.mark.parametrize("token,kind,content_id", PAIRS)
def test_three_surfaces_agree(client, token, kind, content_id):
    catalog = TierCatalog()
    resolver = PrincipalResolver(
        _identity_store(), catalog=catalog, settings=_settings(), audit=AccessAuditLogger(lambda e: None)
    )
    principal = resolver.resolve_token(token)
    descriptor = _content_store().load_content_descriptor(kind, content_id)
    decision = AccessDecisionEngine(catalog).decide(principal, descriptor)

    page = client.get(PAGE_PATHS[kind].format(content_id), headers=_auth(token))
    api = client.get(API_PATHS[kind].format(content_id), headers=_auth(token))

    page_renders = page.status_code == 200
    api_serves = api.status_code == 200
    assert page_renders == api_serves == (not decision.blocked)
    if api_serves:
        assert api.json()["allowed"] is decision.allowed
        assert page.json()["allowed"] is decision.allowed
        assert api.json()["access"] == decision.to_dict()
    else:
        assert page.status_code == 303
        assert api.status_code in (401, 403)
        assert api.json()["reason"] == decision.reason.value


@pytest.mark.parametrize("kind", [ContentKind.ARTICLE, ContentKind.VIDEO])
def test_guard_refuses_write_routes_on_read_only_content(kind):
    with pytest.raises(ValueError):
        require_access(kind, Action.WRITE)
