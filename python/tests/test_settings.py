"""Integration tests for user settings, system prompts and model preferences."""

from uuid import uuid4

import pytest

from polychat.services.llm import ModelInfo, ProviderError
from tests.helpers import ScriptedRouter, auth_headers, create_test_user_id


@pytest.fixture
def user_id():
    return create_test_user_id()


@pytest.fixture
def headers(user_id):
    return auth_headers(user_id)


def create_prompt(client, headers, name, prompt, **fields) -> dict:
    response = client.post(
        "/settings/prompts", json={"name": name, "prompt": prompt, **fields}, headers=headers
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestUserSettings:
    def test_defaults_created_on_first_read(self, authenticated_client, headers):
        response = authenticated_client.get("/settings", headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert body["theme"] == "dark"
        assert body["language"] == "en"
        assert body["font_size"] == 14
        assert body["notifications_enabled"] is True
        assert body["auto_save"] is True

    def test_partial_update(self, authenticated_client, headers):
        response = authenticated_client.put(
            "/settings", json={"theme": "light", "font_size": 16}, headers=headers
        )

        assert response.status_code == 200
        body = authenticated_client.get("/settings", headers=headers).json()
        assert body["theme"] == "light"
        assert body["font_size"] == 16
        assert body["language"] == "en"

    def test_font_size_bounds(self, authenticated_client, headers):
        response = authenticated_client.put("/settings", json={"font_size": 2}, headers=headers)
        assert response.status_code == 400


class TestSystemPrompts:
    def test_create_and_list(self, authenticated_client, headers):
        created = create_prompt(authenticated_client, headers, "Tutor", "Explain simply.")

        assert created["is_default"] is False
        assert created["category"] == "general"
        listed = authenticated_client.get("/settings/prompts", headers=headers).json()
        assert [p["id"] for p in listed] == [created["id"]]

    def test_update(self, authenticated_client, headers):
        created = create_prompt(authenticated_client, headers, "Tutor", "Explain simply.")

        response = authenticated_client.put(
            f"/settings/prompts/{created['id']}",
            json={"prompt": "Explain like I'm five."},
            headers=headers,
        )

        assert response.status_code == 200
        assert response.json()["prompt"] == "Explain like I'm five."
        assert response.json()["name"] == "Tutor"

    def test_delete(self, authenticated_client, headers):
        created = create_prompt(authenticated_client, headers, "Tutor", "Explain simply.")

        response = authenticated_client.delete(
            f"/settings/prompts/{created['id']}", headers=headers
        )

        assert response.status_code == 204
        assert authenticated_client.get("/settings/prompts", headers=headers).json() == []

    def test_activate_makes_prompt_the_only_active_one(self, authenticated_client, headers):
        first = create_prompt(authenticated_client, headers, "A", "a", is_default=True)
        second = create_prompt(authenticated_client, headers, "B", "b", is_default=True)
        third = create_prompt(authenticated_client, headers, "C", "c")

        response = authenticated_client.post(
            f"/settings/prompts/{third['id']}/activate", headers=headers
        )

        assert response.status_code == 200
        assert response.json() == {"success": True}
        active = authenticated_client.get("/settings/prompts/active", headers=headers).json()
        assert [p["id"] for p in active] == [third["id"]]

    def test_toggle_leaves_others(self, authenticated_client, headers):
        first = create_prompt(authenticated_client, headers, "A", "a", is_default=True)
        second = create_prompt(authenticated_client, headers, "B", "b")

        response = authenticated_client.post(
            f"/settings/prompts/{second['id']}/toggle", headers=headers
        )

        assert response.json() == {"id": second["id"], "is_default": True}
        active = authenticated_client.get("/settings/prompts/active", headers=headers).json()
        assert {p["id"] for p in active} == {first["id"], second["id"]}

    def test_other_users_prompt_is_404(self, authenticated_client, headers):
        created = create_prompt(authenticated_client, headers, "A", "a")
        stranger = auth_headers(create_test_user_id())

        for method, path in [
            ("put", f"/settings/prompts/{created['id']}"),
            ("delete", f"/settings/prompts/{created['id']}"),
            ("post", f"/settings/prompts/{created['id']}/activate"),
            ("post", f"/settings/prompts/{created['id']}/toggle"),
        ]:
            kwargs = {"json": {"name": "x"}} if method == "put" else {}
            response = getattr(authenticated_client, method)(path, headers=stranger, **kwargs)
            assert response.status_code == 404, path

    def test_missing_prompt_is_404(self, authenticated_client, headers):
        response = authenticated_client.delete(f"/settings/prompts/{uuid4()}", headers=headers)
        assert response.status_code == 404


class TestModelPreferences:
    def test_save_replaces_all(self, authenticated_client, headers):
        authenticated_client.put(
            "/settings/models",
            json={"models": [{"provider": "openai", "model_id": "gpt-4o", "model_name": "GPT-4o"}]},
            headers=headers,
        )

        response = authenticated_client.put(
            "/settings/models",
            json={
                "models": [
                    {
                        "provider": "anthropic",
                        "model_id": "claude",
                        "model_name": "Claude",
                        "display_order": 2,
                    },
                    {
                        "provider": "xai",
                        "model_id": "grok-2",
                        "model_name": "Grok 2",
                        "is_enabled": False,
                        "display_order": 1,
                    },
                ]
            },
            headers=headers,
        )

        assert response.json() == {"success": True}
        models = authenticated_client.get("/settings/models", headers=headers).json()
        assert [m["model_id"] for m in models] == ["grok-2", "claude"]
        enabled = authenticated_client.get("/settings/models/enabled", headers=headers).json()
        assert [m["model_id"] for m in enabled] == ["claude"]

    def test_toggle_creates_then_flips(self, authenticated_client, headers):
        body = {"provider": "openai", "model_id": "o1", "model_name": "o1"}

        created = authenticated_client.post("/settings/models/toggle", json=body, headers=headers)
        flipped = authenticated_client.post("/settings/models/toggle", json=body, headers=headers)

        assert created.json() == {
            "success": True,
            "is_enabled": True,
            "model_id": "o1",
            "provider": "openai",
        }
        assert flipped.json()["is_enabled"] is False


class TestFetchModels:
    def test_requires_stored_key(self, authenticated_client, headers):
        authenticated_client.app.state.llm_router = ScriptedRouter()

        response = authenticated_client.post(
            "/settings/models/fetch", json={"provider": "openai"}, headers=headers
        )

        assert response.status_code == 400
        assert response.json() == {"error": "No API key found for provider 'openai'"}

    def test_returns_normalized_models(self, authenticated_client, headers):
        authenticated_client.post(
            "/keys", json={"provider": "xai", "api_key": "xai-key"}, headers=headers
        )
        authenticated_client.app.state.llm_router = ScriptedRouter(
            models=[ModelInfo(id="grok-2", name="Grok 2", provider="xai", context_length=131072)]
        )

        response = authenticated_client.post(
            "/settings/models/fetch", json={"provider": " XAI "}, headers=headers
        )

        assert response.status_code == 200
        assert response.json() == [
            {
                "id": "grok-2",
                "name": "Grok 2",
                "provider": "xai",
                "description": None,
                "context_length": 131072,
                "created": 0,
            }
        ]

    def test_vendor_rejection_keeps_status(self, authenticated_client, headers):
        authenticated_client.post(
            "/keys", json={"provider": "openai", "api_key": "sk-bad"}, headers=headers
        )
        authenticated_client.app.state.llm_router = ScriptedRouter(
            error=ProviderError("openai", 401, "Incorrect API key provided")
        )

        response = authenticated_client.post(
            "/settings/models/fetch", json={"provider": "openai"}, headers=headers
        )

        assert response.status_code == 401
        assert response.json() == {"error": "OpenAI (HTTP 401): Incorrect API key provided"}
