from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Optional
from dotenv import load_dotenv

from .config_loader import llm_config_for, load_config, resolve_model_key, role_for
from .core.errors import ConfigurationError
from .logging_setup import configure_logging
from .providers.registry import ProviderRegistry
from .secrets.sources import SecretsResolver
from .storage.history import HistoryStore


def _resolve_path(raw: str, config_dir: Path) -> Path:
    p = Path(raw).expanduser()
    return p if p.is_absolute() else (config_dir / p).resolve()


def build_secrets(cfg: Dict[str, Any]) -> SecretsResolver:
    secrets_cfg = cfg.get("secrets") or {}
    method = secrets_cfg.get("method", ["env", "config", "file", "keyring"])
    mapping = secrets_cfg.get("mapping", {})
    try:
        return SecretsResolver(method=method, mapping=mapping, providers_cfg=cfg.get("providers") or {})
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


def build_client(cfg: Dict[str, Any], model: str, secrets: SecretsResolver):
    """Provider client for a model key or alias."""
    llm_config = llm_config_for(cfg, model)
    provider_cfg = (cfg.get("providers") or {}).get(llm_config.provider) or {}
    ProviderRegistry.ensure_imports()  # make sure built-ins register
    try:
        return ProviderRegistry.create(
            llm_config.provider,
            llm_config=llm_config,
            provider_cfg=provider_cfg,
            secrets=secrets,
        )
    except KeyError as e:
        valid = ", ".join(ProviderRegistry.names())
        raise ConfigurationError(
            f"Unknown provider '{llm_config.provider}' for model '{model}'. Known providers: {valid}"
        ) from e


def build_app(config_path: Path, model: Optional[str] = None, role: Optional[str] = None) -> Dict[str, Any]:
    """
    Composition root: load YAML, set up logging, resolve credentials and build
    the provider client and history store.
    A role supplies the system prompt and, unless `model` is given, the model.
    Returns: dict with cfg, paths, model, client, store, logger, secrets, system_prompt.
    """
    load_dotenv()
    cfg = load_config(config_path)
    config_dir = config_path.resolve().parent

    # ----- Role -----
    system_prompt = cfg.get("system_prompt")
    if role:
        system_prompt, role_model = role_for(cfg, role)
        model = model or role_model

    # ----- Logging -----
    log_cfg = dict(cfg.get("log") or {})
    if log_cfg.get("file"):
        log_cfg["file"] = _resolve_path(str(log_cfg["file"]), config_dir)
    logger = configure_logging(log_cfg)

    # ----- Provider -----
    model_key = resolve_model_key(cfg, model or cfg["model"]["default"])
    if model_key is None:
        valid = ", ".join(sorted(cfg["models"]))
        raise ConfigurationError(f"Unknown model '{model}'. Valid models are: {valid}")
    secrets = build_secrets(cfg)
    client = build_client(cfg, model_key, secrets)
    if not client.is_available():
        logger.warning("Provider '%s' has no credential; requests will fail", client.config.provider)

    # ----- History -----
    history_file = _resolve_path(cfg["history"]["file"], config_dir)
    store = HistoryStore(history_file)

    logger.info("Started with model=%s provider=%s role=%s history=%s",
                model_key, client.config.provider, role, history_file)
    return {
        "cfg": cfg,
        "paths": {"config_dir": config_dir, "history_file": history_file},
        "model": model_key,
        "client": client,
        "store": store,
        "logger": logger,
        "secrets": secrets,
        "system_prompt": system_prompt,
    }
