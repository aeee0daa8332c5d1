# tests/unit/test_bootstrap.py

from __future__ import annotations
import sys, logging
from pathlib import Path
import pytest

# Ensure "src" is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from askai.bootstrap import build_app, build_client
from askai.core.errors import ConfigurationError
from askai.logging_setup import configure_logging
from askai.providers.echo import EchoProvider
from askai.storage.history import HistoryStore


def _write_cfg(tmp_path: Path, extra: str = "", default: str = "echo") -> Path:
    cfg_dir = tmp_path / "config"
    cfg_dir.mkdir(parents=True, exist_ok=True)
    cfg = cfg_dir / "default.yaml"
    cfg.write_text(
        f"""
history:
  file: ../data/history.jsonl
model:
  default: {default}
models:
  echo:
    provider: echo
    model_name: echo-lorem
    max_tokens: 5
    temperature: 0.0
    aliases: [offline]
  bogus:
    provider: nowhere
    model_name: x
    max_tokens: 5
    temperature: 0.0
providers:
  echo:
    token_delay: 0.0
secrets:
  method: env
log:
  file: ../logs/ask-ai.log
  level: debug
{extra}
""",
        encoding="utf-8",
    )
    return cfg


def test_build_app_echo(tmp_path: Path):
    ctx = build_app(_write_cfg(tmp_path))

    assert isinstance(ctx["client"], EchoProvider)
    assert ctx["client"].token_delay == 0.0
    assert ctx["client"].config.max_tokens == 5
    assert ctx["model"] == "echo"
    assert isinstance(ctx["store"], HistoryStore)
    # relative paths resolve against the config directory
    assert ctx["paths"]["history_file"] == (tmp_path / "data" / "history.jsonl").resolve()
    assert (tmp_path / "logs" / "ask-ai.log").exists()
    assert ctx["logger"].name == "askai"


def test_model_override_by_alias(tmp_path: Path):
    ctx = build_app(_write_cfg(tmp_path, default="bogus"), model="offline")
    assert ctx["model"] == "echo"


def test_unknown_model_and_provider(tmp_path: Path):
    cfg = _write_cfg(tmp_path)
    with pytest.raises(ConfigurationError):
        build_app(cfg, model="gpt-99")
    with pytest.raises(ConfigurationError, match="nowhere"):
        build_app(cfg, model="bogus")


def test_bad_secrets_method(tmp_path: Path):
    cfg = _write_cfg(tmp_path)
    cfg.write_text(cfg.read_text(encoding="utf-8").replace("method: env", "method: carrier-pigeon"), encoding="utf-8")
    with pytest.raises(ConfigurationError):
        build_app(cfg)


def test_build_client_for_switching(tmp_path: Path):
    ctx = build_app(_write_cfg(tmp_path))
    client = build_client(ctx["cfg"], "offline", ctx["secrets"])
    assert isinstance(client, EchoProvider)


def test_logging_json_and_null(tmp_path: Path):
    log_file = tmp_path / "log.jsonl"
    logger = configure_logging({"file": log_file, "format": "json", "level": "info"})
    logging.getLogger("askai.test").info("hello %s", "there")
    for h in logger.handlers:
        h.flush()
    assert '"msg": "hello there"' in log_file.read_text(encoding="utf-8")

    logger = configure_logging({})
    assert [type(h) for h in logger.handlers] == [logging.NullHandler]

    with pytest.raises(ConfigurationError):
        configure_logging({"format": "xml"})
    with pytest.raises(ConfigurationError):
        configure_logging({"level": "chatty"})


def test_role_supplies_prompt_and_model(tmp_path: Path):
    roles = """
system_prompt: configured prompt
roles:
  tester:
    model: offline
    prompt:
      - You test things.
      - Report briefly.
  plain:
    prompt: Just answer.
"""
    cfg = _write_cfg(tmp_path, extra=roles, default="bogus")
    ctx = build_app(cfg, role="tester")
    assert ctx["model"] == "echo"
    assert ctx["system_prompt"] == "You test things.\nReport briefly."

    # an explicit model beats the role's model; a role without one keeps the default
    with pytest.raises(ConfigurationError, match="nowhere"):
        build_app(cfg, model="bogus", role="tester")
    with pytest.raises(ConfigurationError, match="nowhere"):
        build_app(cfg, role="plain")

    cfg = _write_cfg(tmp_path, extra=roles)
    assert build_app(cfg)["system_prompt"] == "configured prompt"
    assert build_app(cfg, role="plain")["system_prompt"] == "Just answer."
