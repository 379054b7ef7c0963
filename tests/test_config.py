"""Tests for configuration and settings storage."""

import json
from types import SimpleNamespace

import pytest

from srt_relay.config import TranslatorConfig
from srt_relay.settings import (
    JsonSettingsStore,
    MemorySettingsStore,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    RATE_LIMIT,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_BASE_URL", raising=False)


class TestBaseUrlOverride:

    def test_first_endpoint_disables_features(self):
        config = TranslatorConfig()
        assert config.use_moderator and config.use_structured_mode

        config.set_base_url("https://example.com/v1")

        assert config.base_url == "https://example.com/v1"
        assert config.use_moderator is False
        assert config.use_structured_mode is False

    def test_changing_endpoint_does_not_retrigger(self):
        config = TranslatorConfig()
        config.set_base_url("https://a.example/v1")
        config.use_moderator = True
        config.use_structured_mode = True

        config.set_base_url("https://b.example/v1")

        assert config.use_moderator is True
        assert config.use_structured_mode is True

    def test_clear_then_set_triggers_again(self):
        config = TranslatorConfig()
        config.set_base_url("https://a.example/v1")
        config.use_moderator = True

        config.set_base_url("")
        assert config.base_url is None
        assert config.use_moderator is True

        config.set_base_url("https://b.example/v1")
        assert config.use_moderator is False

    def test_persisted_endpoint(self):
        store = MemorySettingsStore()
        config = TranslatorConfig.from_settings(store)

        config.set_base_url("https://example.com/v1")
        assert store.get(OPENAI_BASE_URL) == "https://example.com/v1"

        config.set_base_url(None)
        assert OPENAI_BASE_URL not in store


class TestFromSettings:

    def test_loads_stored_values(self):
        store = MemorySettingsStore({
            OPENAI_API_KEY: "sk-stored",
            RATE_LIMIT: "20",
            OPENAI_BASE_URL: "https://example.com/v1",
        })
        config = TranslatorConfig.from_settings(store)

        assert config.api_key == "sk-stored"
        assert config.rate_limit == 20
        assert config.base_url == "https://example.com/v1"
        assert config.use_moderator is False
        assert config.use_structured_mode is False

    def test_defaults(self):
        config = TranslatorConfig.from_settings(MemorySettingsStore())
        assert config.api_key is None
        assert config.base_url is None
        assert config.rate_limit == 60
        assert config.to_language == "Hinglish"
        assert config.model_name == "gpt-4o-mini"
        assert config.batch_size_range == (10, 50)

    def test_bad_rate_limit_ignored(self):
        config = TranslatorConfig.from_settings(MemorySettingsStore({RATE_LIMIT: "fast"}))
        assert config.rate_limit == 60

    def test_writes_through(self):
        store = MemorySettingsStore()
        config = TranslatorConfig.from_settings(store)

        config.set_api_key("sk-new")
        config.set_rate_limit(30)

        assert store.get(OPENAI_API_KEY) == "sk-new"
        assert store.get(RATE_LIMIT) == "30"

    def test_env_api_key(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        assert TranslatorConfig().api_key == "sk-env"


class TestFromArgs:

    def test_cli_overrides(self):
        args = SimpleNamespace(
            api_key="sk-cli", base_url="https://x.example/v1", model_name="gpt-4o",
            from_language="English", to_language="German", system_instruction="",
            temperature=0.3, batch_sizes=[5], rate_limit=10,
            no_moderator=False, no_structured=False,
        )
        config = TranslatorConfig.from_args(args, MemorySettingsStore())

        assert config.api_key == "sk-cli"
        assert config.batch_size_range == (5, 5)
        assert config.language_pair.describe() == "English to German"
        assert config.rate_limit == 10
        assert config.use_moderator is False

    def test_flags(self):
        args = SimpleNamespace(api_key="k", no_moderator=True, no_structured=True)
        config = TranslatorConfig.from_args(args)
        assert config.use_moderator is False
        assert config.use_structured_mode is False


class TestValidate:

    def test_valid(self):
        assert TranslatorConfig(api_key="k").validate() is None

    def test_missing_key(self):
        assert "API key" in TranslatorConfig().validate()

    def test_batch_sizes(self):
        assert "Batch sizes" in TranslatorConfig(api_key="k", batch_sizes=[0, 10]).validate()
        assert "Batch sizes" in TranslatorConfig(api_key="k", batch_sizes=[10, 500]).validate()

    def test_temperature(self):
        assert "Temperature" in TranslatorConfig(api_key="k", temperature=3).validate()

    def test_rate_limit(self):
        assert "Rate limit" in TranslatorConfig(api_key="k", rate_limit=0).validate()


class TestJsonSettingsStore:

    def test_write_on_change(self, tmp_path):
        path = tmp_path / "settings.json"
        store = JsonSettingsStore(path)
        store.set(RATE_LIMIT, "15")

        assert json.loads(path.read_text(encoding="utf-8")) == {RATE_LIMIT: "15"}

    def test_load_at_init(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({OPENAI_API_KEY: "sk-file"}), encoding="utf-8")

        assert JsonSettingsStore(path).get(OPENAI_API_KEY) == "sk-file"

    def test_remove(self, tmp_path):
        path = tmp_path / "settings.json"
        store = JsonSettingsStore(path)
        store.set(OPENAI_BASE_URL, "https://example.com")
        store.remove(OPENAI_BASE_URL)

        assert json.loads(path.read_text(encoding="utf-8")) == {}

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{not json", encoding="utf-8")

        assert JsonSettingsStore(path).get(OPENAI_API_KEY) is None
