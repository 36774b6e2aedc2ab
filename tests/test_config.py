import pytest

import autoalt.config as config


def test_read_env_file_parses_comments_exports_and_quotes(tmp_path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text(
        "\n".join(
            [
                "# comment",
                "export ANTHROPIC_API_KEY='abc123'",
                'HF_TOKEN="hf_test"',
                "INVALID_LINE",
                "  EMPTY = spaced-value  ",
            ]
        ),
        encoding="utf-8",
    )

    parsed = config._read_env_file(env_file)

    assert parsed["ANTHROPIC_API_KEY"] == "abc123"
    assert parsed["HF_TOKEN"] == "hf_test"
    assert parsed["EMPTY"] == "spaced-value"
    assert "INVALID_LINE" not in parsed


def test_read_env_file_missing_returns_empty(tmp_path) -> None:
    assert config._read_env_file(tmp_path / "nope.env") == {}


def test_resolve_anthropic_api_key_prefers_environment(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "env_value")
    (tmp_path / ".env").write_text("ANTHROPIC_API_KEY=file_value", encoding="utf-8")

    assert config.resolve_anthropic_api_key(search_dir=tmp_path) == "env_value"


def test_resolve_anthropic_api_key_reads_cwd_then_search_dir(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    cwd = tmp_path / "cwd"
    search = tmp_path / "search"
    cwd.mkdir()
    search.mkdir()
    monkeypatch.chdir(cwd)
    (cwd / ".env").write_text("ANTHROPIC_API_KEY=cwd_value", encoding="utf-8")
    (search / ".env").write_text("ANTHROPIC_API_KEY=search_value", encoding="utf-8")

    assert config.resolve_anthropic_api_key(search_dir=search) == "cwd_value"

    (cwd / ".env").unlink()
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    assert config.resolve_anthropic_api_key(search_dir=search) == "search_value"


def test_resolve_anthropic_api_key_raises_when_missing(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.chdir(tmp_path)
    with pytest.raises(RuntimeError, match="ANTHROPIC_API_KEY not found"):
        config.resolve_anthropic_api_key(search_dir=tmp_path / "missing")


def test_resolve_hf_token_sets_both_env_names(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv("HF_TOKEN", raising=False)
    monkeypatch.delenv("HUGGINGFACE_HUB_TOKEN", raising=False)
    monkeypatch.chdir(tmp_path)
    env_dir = tmp_path / "envdir"
    env_dir.mkdir()
    (env_dir / ".env").write_text("HUGGINGFACE_HUB_TOKEN=hf_123", encoding="utf-8")

    token = config.resolve_hf_token(search_dir=env_dir)

    assert token == "hf_123"
    assert config.os.environ["HF_TOKEN"] == "hf_123"
    assert config.os.environ["HUGGINGFACE_HUB_TOKEN"] == "hf_123"


def test_resolve_hf_token_raises_when_missing(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv("HF_TOKEN", raising=False)
    monkeypatch.delenv("HUGGINGFACE_HUB_TOKEN", raising=False)
    monkeypatch.chdir(tmp_path)
    with pytest.raises(RuntimeError, match="HF_TOKEN not found"):
        config.resolve_hf_token(search_dir=tmp_path)


def test_resolve_claude_model_precedence(monkeypatch) -> None:
    monkeypatch.setenv("ANTHROPIC_MODEL", "anthropic-env-model")
    monkeypatch.setenv("CLAUDE_MODEL", "legacy-env-model")
    assert config.resolve_claude_model("cli-model") == "cli-model"
    assert config.resolve_claude_model() == "anthropic-env-model"

    monkeypatch.delenv("ANTHROPIC_MODEL")
    assert config.resolve_claude_model() == "legacy-env-model"

    monkeypatch.delenv("CLAUDE_MODEL")
    assert config.resolve_claude_model() == config.DEFAULT_CLAUDE_MODEL


def test_resolve_ollama_settings_from_search_dir_env(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv(config.OLLAMA_BASE_URL_ENV_VAR, raising=False)
    monkeypatch.delenv(config.OLLAMA_MODEL_ENV_VAR, raising=False)
    monkeypatch.chdir(tmp_path)
    env_dir = tmp_path / "envdir"
    env_dir.mkdir()
    (env_dir / ".env").write_text(
        "AUTOALT_OLLAMA_BASE_URL=http://gpu-box:11434\nAUTOALT_OLLAMA_MODEL=llava:13b\n",
        encoding="utf-8",
    )

    assert config.resolve_ollama_base_url(search_dir=env_dir) == "http://gpu-box:11434"
    assert config.resolve_ollama_model(search_dir=env_dir) == "llava:13b"


def test_resolve_endpoints_fall_back_to_defaults(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv(config.HF_ENDPOINT_ENV_VAR, raising=False)
    monkeypatch.delenv(config.OLLAMA_KEEP_ALIVE_ENV_VAR, raising=False)
    monkeypatch.chdir(tmp_path)

    assert config.resolve_hf_endpoint(search_dir=tmp_path) == config.DEFAULT_HF_ENDPOINT
    assert config.resolve_ollama_keep_alive(search_dir=tmp_path) == "10m"


def test_numeric_settings_clamp_and_fall_back(monkeypatch) -> None:
    monkeypatch.setenv(config.TIMEOUT_ENV_VAR, "5")
    monkeypatch.setenv(config.MAX_RETRIES_ENV_VAR, "99")
    monkeypatch.setenv(config.CONCURRENCY_ENV_VAR, "not-a-number")
    monkeypatch.setenv(config.BACKOFF_BASE_ENV_VAR, "0")
    monkeypatch.setenv(config.DEDUP_THRESHOLD_ENV_VAR, "40")
    monkeypatch.setenv(config.INTERIOR_GATE_ENV_VAR, "3")

    assert config.resolve_timeout_seconds() == 30
    assert config.resolve_max_retries() == 8
    assert config.resolve_concurrency() == 2
    assert config.resolve_retry_backoff_seconds() == 0.05
    assert config.resolve_dedup_threshold() == 32
    assert config.resolve_interior_gate() == 3


def test_numeric_settings_defaults(monkeypatch) -> None:
    for var in (
        config.MAX_EDGE_ENV_VAR,
        config.JPEG_QUALITY_ENV_VAR,
        config.DEDUP_THRESHOLD_ENV_VAR,
        config.INTERIOR_GATE_ENV_VAR,
    ):
        monkeypatch.delenv(var, raising=False)

    assert config.resolve_max_image_edge() == 1024
    assert config.resolve_jpeg_quality() == 80
    assert config.resolve_dedup_threshold() == 6
    assert config.resolve_interior_gate() == 2
