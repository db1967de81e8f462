"""Tests for notex.config: run settings, TOML file, provider detection."""

import pytest

from notex.config import (
    DEFAULT_BASE_URL,
    NotexConfig,
    OracleConfig,
    RunConfig,
    detect_default_oracle,
    load_config,
    load_or_default,
    save_config,
    with_overrides,
)
from notex.types import OutputFormat


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("NOTEX_PROVIDER", "NOTEX_MODEL", "NOTEX_BASE_URL", "NOTEX_API_KEY",
                "NOTEX_CONFIG", "OPENAI_API_KEY", "ANTHROPIC_API_KEY"):
        monkeypatch.delenv(var, raising=False)


class TestRunConfig:
    def test_defaults(self):
        run = RunConfig()
        assert (run.concurrency, run.max_retries, run.format) == (8, 3, OutputFormat.MARKDOWN)
        assert not (run.dry_run or run.reorganize or run.cross_ref)

    @pytest.mark.parametrize("kwargs", [
        {"concurrency": 0},
        {"max_retries": -1},
        {"backoff_base": -1.0},
        {"listing_batch_size": 0},
        {"default_category": " "},
    ])
    def test_validation(self, kwargs):
        with pytest.raises(ValueError):
            RunConfig(**kwargs)

    def test_format_coerced(self):
        assert RunConfig(format="plain").format is OutputFormat.PLAIN

    def test_immutable(self):
        with pytest.raises(Exception):
            RunConfig().concurrency = 2


class TestDetectDefaultOracle:
    def test_local_fallback(self):
        oracle = detect_default_oracle()
        assert oracle.name == "openai-compatible"
        assert oracle.params["base_url"] == DEFAULT_BASE_URL

    def test_openai_key(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        assert detect_default_oracle().name == "openai"

    def test_custom_base_url_beats_openai_key(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("NOTEX_BASE_URL", "http://gpu-box:8000/v1")
        oracle = detect_default_oracle()
        assert oracle.name == "openai-compatible"
        assert oracle.params["base_url"] == "http://gpu-box:8000/v1"

    def test_anthropic_key(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "key")
        assert detect_default_oracle().name == "anthropic"

    def test_explicit_provider(self, monkeypatch):
        monkeypatch.setenv("NOTEX_PROVIDER", "ollama")
        monkeypatch.setenv("NOTEX_MODEL", "mistral")
        assert detect_default_oracle() == OracleConfig("ollama", {"model": "mistral"})


class TestFile:
    def test_save_and_load(self, tmp_path):
        path = tmp_path / "notex.toml"
        config = NotexConfig(
            run=RunConfig(concurrency=4, format=OutputFormat.PLAIN, exclude=("*.tmp",)),
            oracle=OracleConfig("ollama", {"model": "llama3.2"}),
        )
        save_config(config, path)

        assert path.read_text().startswith("# notex configuration")
        loaded = load_config(path)
        assert loaded.run == config.run
        assert loaded.oracle == config.oracle
        assert loaded.path == path

    def test_api_key_not_saved(self, tmp_path):
        path = tmp_path / "notex.toml"
        save_config(NotexConfig(oracle=OracleConfig("openai", {"api_key": "sk-secret"})), path)
        assert "sk-secret" not in path.read_text()

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "notex.toml"
        path.write_text('[oracle]\nname = "openai-compatible"\nmodel = "small"\n')
        monkeypatch.setenv("NOTEX_MODEL", "large")
        assert load_config(path).oracle.params["model"] == "large"

    def test_unknown_run_key(self, tmp_path):
        path = tmp_path / "notex.toml"
        path.write_text("[run]\nparallelism = 4\n")
        with pytest.raises(ValueError, match="parallelism"):
            load_config(path)

    def test_newer_version_rejected(self, tmp_path):
        path = tmp_path / "notex.toml"
        path.write_text("[notex]\nversion = 99\n")
        with pytest.raises(ValueError, match="newer"):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.toml")

    def test_discovers_cwd_file(self, tmp_path, monkeypatch):
        (tmp_path / "notex.toml").write_text("[run]\nconcurrency = 2\n")
        monkeypatch.chdir(tmp_path)
        assert load_or_default().run.concurrency == 2

    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = load_or_default()
        assert config.path is None
        assert config.run == RunConfig()


class TestOverrides:
    def test_cli_beats_everything(self):
        base = NotexConfig(run=RunConfig(concurrency=2), oracle=OracleConfig("openai-compatible", {"model": "a"}))
        config = with_overrides(base, concurrency=6, model="b", dry_run=None)
        assert config.run.concurrency == 6
        assert config.run.dry_run is False
        assert config.oracle.params["model"] == "b"
        assert base.oracle.params["model"] == "a"

    def test_provider_switch_drops_old_params(self):
        base = NotexConfig(oracle=OracleConfig("openai-compatible", {"base_url": "http://x", "api_key": "k"}))
        config = with_overrides(base, provider="ollama", model="mistral")
        assert config.oracle == OracleConfig("ollama", {"model": "mistral"})

    def test_invalid_override_raises(self):
        with pytest.raises(ValueError):
            with_overrides(NotexConfig(), concurrency=0)
