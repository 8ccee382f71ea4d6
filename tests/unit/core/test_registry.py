"""Unit tests for backend URL resolution and the persisted selection."""

import pytest

from image_transform.core.config_manager import ConfigManager
from image_transform.core.registry import BackendId, BackendRegistry, SelectionStore
from image_transform.core.settings import DEFAULT_BASE_URL, Settings

LATEST = "https://latest.example.net"
PINNED = "https://pinned.example.net"
GENERIC = "https://generic.example.net"


class TestResolveUrl:

    def test_nothing_configured_uses_default(self, make_registry):
        registry = make_registry()
        assert registry.resolve_url(BackendId.LATEST) == DEFAULT_BASE_URL
        assert registry.resolve_url(BackendId.PINNED) == DEFAULT_BASE_URL

    def test_generic_url_serves_both(self, make_registry):
        registry = make_registry(api_base_url=GENERIC)
        assert registry.resolve_url("latest") == GENERIC
        assert registry.resolve_url("pinned") == GENERIC

    def test_latest_override(self, make_registry):
        registry = make_registry(api_base_url_latest=LATEST, api_base_url=GENERIC)
        assert registry.resolve_url(BackendId.LATEST) == LATEST

    def test_pinned_prefers_generic_over_latest(self, make_registry):
        registry = make_registry(api_base_url_latest=LATEST, api_base_url=GENERIC)
        assert registry.resolve_url(BackendId.PINNED) == GENERIC

    def test_pinned_falls_back_to_latest(self, make_registry):
        registry = make_registry(api_base_url_latest=LATEST)
        assert registry.resolve_url(BackendId.PINNED) == LATEST

    def test_pinned_override(self, make_registry):
        registry = make_registry(api_base_url_latest=LATEST, api_base_url_pinned=PINNED)
        assert registry.resolve_url(BackendId.PINNED) == PINNED
        assert registry.resolve_url(BackendId.LATEST) == LATEST

    def test_pinned_fallback_disabled(self, make_registry):
        registry = make_registry(api_base_url_latest=LATEST, pinned_falls_back_to_latest=False)
        assert registry.resolve_url(BackendId.PINNED) == DEFAULT_BASE_URL

    def test_trailing_slash_stripped(self, make_registry):
        registry = make_registry(api_base_url_latest=LATEST + "/")
        assert registry.resolve_url(BackendId.LATEST) == LATEST

    def test_unknown_selection(self, make_registry):
        with pytest.raises(ValueError):
            make_registry().resolve_url("nightly")


def test_list_options(make_registry):
    registry = make_registry(api_base_url_latest=LATEST, pinned_version_label="1.2.0")

    options = registry.list_options()

    assert [(o.id, o.label, o.url) for o in options] == [
        (BackendId.LATEST, "Latest", LATEST),
        (BackendId.PINNED, "v1.2.0 (Pinned)", LATEST),
    ]


class TestSelection:

    @pytest.mark.asyncio
    async def test_defaults_to_latest(self, make_registry):
        registry = make_registry(api_base_url_latest=LATEST, api_base_url_pinned=PINNED)
        assert await registry.get_selection() is BackendId.LATEST
        assert await registry.active_url() == LATEST

    @pytest.mark.asyncio
    async def test_selection_persists(self, make_registry, preferences_path):
        registry = make_registry(api_base_url_latest=LATEST, api_base_url_pinned=PINNED)

        assert await registry.set_selection("pinned") is BackendId.PINNED

        assert "backend_selection = pinned" in preferences_path.read_text(encoding="utf-8")
        reopened = make_registry(api_base_url_latest=LATEST, api_base_url_pinned=PINNED)
        assert await reopened.get_selection() is BackendId.PINNED
        assert await reopened.active_url() == PINNED

    @pytest.mark.asyncio
    async def test_selection_reread_on_every_resolution(self, make_registry):
        first = make_registry(api_base_url_latest=LATEST, api_base_url_pinned=PINNED)
        second = make_registry(api_base_url_latest=LATEST, api_base_url_pinned=PINNED)

        assert await first.active_url() == LATEST
        await second.set_selection(BackendId.PINNED)
        assert await first.active_url() == PINNED

    @pytest.mark.asyncio
    async def test_unknown_stored_value_reads_as_latest(self, preferences_path):
        preferences_path.parent.mkdir(parents=True)
        preferences_path.write_text("backend_selection = nightly\n", encoding="utf-8")
        store = SelectionStore(preferences_path, config_manager=ConfigManager())

        assert await store.load() is BackendId.LATEST

    @pytest.mark.asyncio
    async def test_set_unknown_selection_rejected(self, make_registry, preferences_path):
        with pytest.raises(ValueError):
            await make_registry().set_selection("nightly")
        assert not preferences_path.exists()

    @pytest.mark.asyncio
    async def test_unwritable_store_keeps_working(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file", encoding="utf-8")
        store = SelectionStore(blocker / "preferences.txt", config_manager=ConfigManager())
        registry = BackendRegistry(Settings(api_base_url_latest=LATEST), store=store)

        assert await registry.set_selection("pinned") is BackendId.PINNED
        assert await registry.get_selection() is BackendId.LATEST
