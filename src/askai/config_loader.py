# src/askai/config_loader.py

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
import yaml

from askai.core.errors import ConfigurationError
from askai.core.reflow import DEFAULT_BORDER_ALLOWANCE, DEFAULT_MIN_FLUSH
from askai.core.types import LLMConfig

DEFAULT_CONTEXT_LENGTH = 10


def _require(d: Dict[str, Any], dotted: str, typ: type) -> Any:
    cur: Any = d
    for k in dotted.split("."):
        if not isinstance(cur, dict) or k not in cur:
            raise ConfigurationError(f"Missing config key: {dotted}")
        cur = cur[k]
    if typ is str and not isinstance(cur, str):
        raise ConfigurationError(f"'{dotted}' must be a string")
    if typ is dict and (not isinstance(cur, dict) or not cur):
        raise ConfigurationError(f"'{dotted}' must be a non-empty mapping")
    return cur


def _optional_int(section: Dict[str, Any], key: str, where: str, default: Optional[int], minimum: int) -> Optional[int]:
    val = section.get(key, default)
    if val is None:
        return None
    if isinstance(val, bool) or not isinstance(val, int) or val < minimum:
        raise ConfigurationError(f"'{where}.{key}' must be an integer >= {minimum}")
    return val


def _validate_model(key: str, entry: Any) -> None:
    where = f"models.{key}"
    if not isinstance(entry, dict):
        raise ConfigurationError(f"'{where}' must be a mapping")
    for field in ("provider", "model_name"):
        if not isinstance(entry.get(field), str) or not entry[field]:
            raise ConfigurationError(f"'{where}.{field}' must be a non-empty string")
    _optional_int(entry, "max_tokens", where, None, 1)
    if "max_tokens" not in entry:
        raise ConfigurationError(f"Missing config key: {where}.max_tokens")
    temp = entry.get("temperature")
    if isinstance(temp, bool) or not isinstance(temp, (int, float)) or not 0 <= temp <= 2:
        raise ConfigurationError(f"'{where}.temperature' must be a number between 0 and 2")
    aliases = entry.get("aliases", [])
    if not isinstance(aliases, list) or not all(isinstance(a, str) for a in aliases):
        raise ConfigurationError(f"'{where}.aliases' must be a list of strings")


def _validate_role(name: str, entry: Any) -> Dict[str, Any]:
    where = f"roles.{name}"
    if not isinstance(entry, dict):
        raise ConfigurationError(f"'{where}' must be a mapping")
    prompt = entry.get("prompt")
    if isinstance(prompt, str):
        prompt = [prompt]
    if not isinstance(prompt, list) or not prompt or not all(isinstance(p, str) for p in prompt):
        raise ConfigurationError(f"'{where}.prompt' must be a string or a list of strings")
    for field in ("model", "description"):
        if entry.get(field) is not None and not isinstance(entry[field], str):
            raise ConfigurationError(f"'{where}.{field}' must be a string")
    return {**entry, "prompt": prompt}


def load_config(path: Path) -> Dict[str, Any]:
    if not path or not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Config is not valid YAML: {path}: {e}") from e
    if not isinstance(raw, dict) or not raw:
        raise ConfigurationError(f"Config is empty or invalid YAML: {path}")

    # Validate required keys (no defaults here)
    _require(raw, "history.file", str)
    default_model = _require(raw, "model.default", str)
    models = _require(raw, "models", dict)

    for key, entry in models.items():
        _validate_model(str(key), entry)
        entry["provider"] = entry["provider"].lower()
    if resolve_model_key(raw, default_model) is None:
        raise ConfigurationError(f"model.default '{default_model}' is not defined under 'models'")

    # Optional sections get their documented defaults
    history = raw["history"]
    history["context_length"] = _optional_int(history, "context_length", "history", DEFAULT_CONTEXT_LENGTH, 1)

    display = raw.get("display") or {}
    if not isinstance(display, dict):
        raise ConfigurationError("'display' must be a mapping")
    display["border_allowance"] = _optional_int(display, "border_allowance", "display", DEFAULT_BORDER_ALLOWANCE, 0)
    display["min_flush_chars"] = _optional_int(display, "min_flush_chars", "display", DEFAULT_MIN_FLUSH, 1)
    display["max_width"] = _optional_int(display, "max_width", "display", None, 1)
    raw["display"] = display

    for section in ("providers", "secrets", "log"):
        if raw.get(section) is not None and not isinstance(raw[section], dict):
            raise ConfigurationError(f"'{section}' must be a mapping")
    if raw.get("system_prompt") is not None and not isinstance(raw["system_prompt"], str):
        raise ConfigurationError("'system_prompt' must be a string")

    roles = raw.get("roles") or {}
    if not isinstance(roles, dict):
        raise ConfigurationError("'roles' must be a mapping")
    raw["roles"] = {str(name): _validate_role(str(name), entry) for name, entry in roles.items()}
    for name, role in raw["roles"].items():
        if role.get("model") and resolve_model_key(raw, role["model"]) is None:
            raise ConfigurationError(f"roles.{name}.model '{role['model']}' is not defined under 'models'")

    # Leave paths as provided; resolve them later in bootstrap/composition
    return raw


def resolve_model_key(cfg: Dict[str, Any], name: str) -> Optional[str]:
    """Map a model key or one of its aliases to the key under 'models'."""
    models = cfg.get("models") or {}
    if name in models:
        return name
    for key, entry in models.items():
        if name in (entry.get("aliases") or []):
            return key
    return None


def llm_config_for(cfg: Dict[str, Any], name: str) -> LLMConfig:
    key = resolve_model_key(cfg, name)
    if key is None:
        valid = ", ".join(sorted(cfg.get("models") or {}))
        raise ConfigurationError(f"Unknown model '{name}'. Valid models are: {valid}")
    entry = cfg["models"][key]
    return LLMConfig(
        provider=entry["provider"],
        model_name=entry["model_name"],
        max_tokens=int(entry["max_tokens"]),
        temperature=float(entry["temperature"]),
    )


def role_for(cfg: Dict[str, Any], name: str) -> Tuple[str, Optional[str]]:
    """System prompt (list entries joined by newlines) and optional model key for a role."""
    roles = cfg.get("roles") or {}
    if name not in roles:
        valid = ", ".join(sorted(roles)) or "none defined"
        raise ConfigurationError(f"Role '{name}' not found in config. Roles: {valid}")
    role = roles[name]
    return "\n".join(role["prompt"]), role.get("model") or None


def redacted(value: Any) -> Any:
    """Deep copy of a config tree with every api_key value masked."""
    if isinstance(value, dict):
        return {k: ("****" if k == "api_key" and v else redacted(v)) for k, v in value.items()}
    if isinstance(value, list):
        return [redacted(v) for v in value]
    return value
