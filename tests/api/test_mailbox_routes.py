"""Integration tests for the mailbox endpoints.

These tests drive the FastAPI surface with a TestClient and an injected
MailboxView over the in-memory transport.
"""

from fastapi.testclient import TestClient

from api.dependencies import get_mailbox_view, initialize_mailbox_view
from main import app
from models.settings import MailboxSettings
from transport.memory import InMemoryMailTransport

NEAR_BOTTOM = {"scroll_top": 900, "scroll_height": 1200, "client_height": 200}


def ids(body: dict) -> list[str]:
    return [item["id"] for item in body["items"]]


class TestAppEndpoints:
    """Tests for the root and health endpoints."""

    def test_root(self):
        """GET / returns a welcome message."""
        response = TestClient(app).get("/")

        assert response.status_code == 200
        assert response.json()["docs_url"] == "/docs"

    def test_health(self):
        """GET /health reports healthy."""
        response = TestClient(app).get("/health")

        assert response.json() == {"status": "healthy"}


class TestFeedRoutes:
    """Tests for opening folders and scrolling."""

    def test_view_before_open(self, client_with_view):
        """GET /mailbox/view works before any folder is open."""
        client, _ = client_with_view

        response = client.get("/mailbox/view")

        assert response.status_code == 200
        assert response.json()["folder"] is None
        assert response.json()["items"] == []

    def test_open_and_scroll(self, client_with_view):
        """POST /mailbox/open then /mailbox/scroll pages through the inbox."""
        client, _ = client_with_view

        opened = client.post("/mailbox/open", json={"folder": "inbox"})
        assert opened.status_code == 200
        assert opened.json()["success"]
        assert opened.json()["has_more"]

        scrolled = client.post("/mailbox/scroll", json=NEAR_BOTTOM)
        assert scrolled.json()["has_more"] is False

        view = client.get("/mailbox/view").json()
        assert ids(view) == ["A", "B", "C", "D", "E"]
        assert view["state"] == "ready"

    def test_scroll_before_open_conflicts(self, client_with_view):
        """Scrolling without an open folder answers 409."""
        client, _ = client_with_view

        response = client.post("/mailbox/scroll", json=NEAR_BOTTOM)

        assert response.status_code == 409
        assert response.json()["error"] == "Folder Not Open"

    def test_invalid_viewport(self, client_with_view):
        """A negative scroll position is rejected by validation."""
        client, _ = client_with_view
        client.post("/mailbox/open", json={"folder": "inbox"})

        response = client.post(
            "/mailbox/scroll", json={"scroll_top": -1, "scroll_height": 10, "client_height": 5}
        )

        assert response.status_code == 422


class TestSelectionRoutes:
    """Tests for keys, modes, clicks and selection commands."""

    def test_ctrl_click_selection(self, client_with_view):
        """Key events and clicks build a bulk selection."""
        client, _ = client_with_view
        client.post("/mailbox/open", json={"folder": "inbox"})

        keys = client.post("/mailbox/keys", json=[{"type": "keydown", "key": "Control", "ctrl": True}])
        assert keys.json()["mode"] == "mass"

        client.post("/mailbox/activate", json={"id": "A"})
        clicked = client.post("/mailbox/activate", json={"id": "C"})

        assert clicked.json()["selection"]["bulk_selected"] == ["A", "C"]

        released = client.post("/mailbox/keys", json=[{"type": "keyup", "key": "Control"}])
        assert released.json()["mode"] == "single"

    def test_open_item(self, client_with_view):
        """A click in single mode opens the row."""
        client, _ = client_with_view
        client.post("/mailbox/open", json={"folder": "inbox"})

        response = client.post("/mailbox/activate", json={"id": "B"})

        assert response.json()["opened_id"] == "B"
        assert response.json()["selection"]["selected_id"] == "B"

    def test_set_mode_and_select_all(self, client_with_view):
        """Select-all resets the mode and selects loaded rows."""
        client, _ = client_with_view
        client.post("/mailbox/open", json={"folder": "inbox"})
        client.post("/mailbox/mode", json={"mode": "range"})

        response = client.post("/mailbox/select-all")

        assert response.json()["outcome"]["message"] == "Selected 3 emails"
        view = client.get("/mailbox/view").json()
        assert view["selection"]["mode"] == "single"
        assert view["selection"]["bulk_selected"] == ["A", "B", "C"]

        cleared = client.post("/mailbox/clear-selection")
        assert cleared.json()["selection"]["bulk_selected"] == []

    def test_unknown_mode_rejected(self, client_with_view):
        """An unknown mode fails validation."""
        client, _ = client_with_view

        response = client.post("/mailbox/mode", json={"mode": "lasso"})

        assert response.status_code == 422


class TestMutationRoutes:
    """Tests for label and read-state operations."""

    def test_archive_selection(self, client_with_view):
        """Archiving the selection removes the rows."""
        client, view = client_with_view
        client.post("/mailbox/open", json={"folder": "inbox"})
        client.post("/mailbox/select-all")

        response = client.post("/mailbox/archive", json={})

        body = response.json()
        assert response.status_code == 200
        assert body["success"]
        assert body["outcome"]["affected_ids"] == ["A", "B", "C"]
        assert ids(client.get("/mailbox/view").json()) == []
        assert view.transport.messages["A"].labels == set()

    def test_archive_in_spam_is_outcome_not_error(self, client_with_view):
        """A refused archive is an HTTP 200 carrying a policy violation."""
        client, _ = client_with_view
        client.post("/mailbox/open", json={"folder": "spam"})

        response = client.post("/mailbox/archive", json={"ids": ["X"]})

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["outcome"]["status"] == "policy_violation"

    def test_spam_and_back(self, client_with_view):
        """Marking spam then moving back to the inbox round-trips the labels."""
        client, view = client_with_view
        client.post("/mailbox/open", json={"folder": "inbox"})

        spam = client.post("/mailbox/spam", json={"ids": ["A"]})
        assert spam.json()["outcome"]["message"] == "1 item(s) marked as spam"

        client.post("/mailbox/open", json={"folder": "spam"})
        assert "A" in ids(client.get("/mailbox/view").json())

        back = client.post("/mailbox/inbox", json={"ids": ["A"]})
        assert back.json()["success"]
        assert view.transport.messages["A"].labels == {"INBOX"}

    def test_read_and_unread(self, client_with_view):
        """Read shortcuts act on the selection."""
        client, _ = client_with_view
        client.post("/mailbox/open", json={"folder": "inbox"})
        client.post("/mailbox/select-all")

        unread = client.post("/mailbox/unread")
        assert unread.json()["outcome"]["message"] == "Marked as unread"
        assert all(item["unread"] for item in client.get("/mailbox/view").json()["items"])

        client.post("/mailbox/select-all")
        read = client.post("/mailbox/read")
        assert read.json()["outcome"]["message"] == "Marked as read"

    def test_archive_before_open_conflicts(self, client_with_view):
        """Mutations without an open folder answer 409."""
        client, _ = client_with_view

        response = client.post("/mailbox/archive", json={"ids": ["A"]})

        assert response.status_code == 409


class TestLifespan:
    """Tests for app startup and dependency wiring."""

    def test_lifespan_initializes_view(self, monkeypatch):
        """Entering the app context creates the shared view from the environment."""
        monkeypatch.setenv("MAILVIEW_USER_ID", "u-env")
        monkeypatch.setenv("MAILVIEW_CONNECTION_ID", "c-env")
        monkeypatch.delenv("MAILVIEW_TRANSPORT_BASE_URL", raising=False)

        with TestClient(app) as client:
            view = get_mailbox_view()
            assert view.session.user_id == "u-env"
            assert isinstance(view.transport, InMemoryMailTransport)
            assert client.get("/mailbox/view").status_code == 200

    def test_initialize_with_explicit_settings(self):
        """Explicit settings and transport are used as given."""
        transport = InMemoryMailTransport()

        view = initialize_mailbox_view(
            MailboxSettings(user_id="u", connection_id="c", page_size=7), transport=transport
        )

        assert view.transport is transport
        assert view.settings.page_size == 7
        assert view.session.is_active
