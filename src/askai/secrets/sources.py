# src/askai/secrets/sources.py

from __future__ import annotations
from pathlib import Path
from typing import Any, Protocol, Optional, Dict, Iterable, List, Mapping, Union
import logging, os, getpass, subprocess

import keyring as _keyring

LOGGER = logging.getLogger(__name__)


class SecretSource(Protocol):
    def get(self, provider: str, service: str) -> Optional[str]: ...


class EnvSource:
    def get(self, provider: str, service: str) -> Optional[str]:
        # 1) exact env var name from the mapping
        val = os.getenv(service)
        if val:
            return val.strip()
        # 2) derived names, e.g. XAI_API_KEY
        for key in (f"{provider.upper()}_API_KEY", f"{service.upper()}_API_KEY"):
            val = os.getenv(key)
            if val:
                return val.strip()
        return None


class ConfigSource:
    """
    providers.<name>.api_key from the YAML config. A value containing
    whitespace is a shell command whose output is the key.
    """
    def __init__(self, providers_cfg: Optional[Mapping[str, Any]] = None, timeout: float = 10.0):
        self._providers = providers_cfg or {}
        self._timeout = timeout

    def get(self, provider: str, service: str) -> Optional[str]:
        raw = (self._providers.get(provider) or {}).get("api_key")
        if not raw:
            return None
        raw = str(raw)
        if not any(ch in raw for ch in " \t"):
            return raw.strip()
        try:
            p = subprocess.run(["sh", "-c", raw], capture_output=True, text=True,
                               check=False, timeout=self._timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            LOGGER.error("API key command for '%s' failed: %s", provider, e)
            return None
        if p.returncode != 0:
            LOGGER.error("API key command for '%s' exited with %s", provider, p.returncode)
            return None
        return p.stdout.strip() or None


class FileSource:
    """First line of $XDG_CONFIG_HOME/ask-ai/<provider>-api-key."""
    def __init__(self, config_home: Optional[Path] = None):
        self._config_home = config_home

    def _dir(self) -> Path:
        if self._config_home is not None:
            return Path(self._config_home)
        xdg = os.getenv("XDG_CONFIG_HOME")
        base = Path(xdg) if xdg else Path.home() / ".config"
        return base / "ask-ai"

    def get(self, provider: str, service: str) -> Optional[str]:
        path = self._dir() / f"{provider.lower()}-api-key"
        if not path.is_file():
            return None
        lines = path.read_text(encoding="utf-8").splitlines()
        if not lines:
            return None
        return lines[0].strip() or None


class SystemKeyringSource:
    def get(self, provider: str, service: str) -> Optional[str]:
        if hasattr(_keyring, "get_credential"):
            try:
                cred = _keyring.get_credential(service, None)  # type: ignore[arg-type]
                if cred and getattr(cred, "password", None):
                    return cred.password.strip()
            except Exception as e:
                LOGGER.debug("keyring credential lookup failed for %s: %s", service, e)
        for account in ("API_KEY", f"{provider.upper()}_API_KEY", "default", service, getpass.getuser()):
            try:
                val = _keyring.get_password(service, account)
                if val:
                    return val.strip()
            except Exception as e:
                LOGGER.debug("keyring password lookup failed for %s/%s: %s", service, account, e)
        return None


_ALLOWED_METHODS = ("env", "config", "file", "keyring")


def _normalise_methods(method: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(method, str):
        methods = [method]
    else:
        methods = list(method)
    norm = []
    for m in methods:
        key = str(m).strip().lower()
        if key not in _ALLOWED_METHODS:
            raise ValueError(f"Unknown secrets method '{m}'. Allowed: {sorted(_ALLOWED_METHODS)}")
        if key not in norm:
            norm.append(key)
    return norm


def build_secret_sources(method: Union[str, Iterable[str]],
                         providers_cfg: Optional[Mapping[str, Any]] = None) -> List[SecretSource]:
    sources: List[SecretSource] = []
    for name in _normalise_methods(method):
        if name == "env":
            sources.append(EnvSource())
        elif name == "config":
            sources.append(ConfigSource(providers_cfg))
        elif name == "file":
            sources.append(FileSource())
        elif name == "keyring":
            sources.append(SystemKeyringSource())
    return sources


class SecretsResolver:
    """
    Resolve secrets using one or more methods in order.
    mapping: per-provider map of names -> service/env-key
      e.g. { "openai": { "api_key": "OPENAI_API_KEY" } }
    """
    def __init__(self, method: Union[str, Iterable[str]] = _ALLOWED_METHODS,
                 mapping: Optional[Dict[str, Dict[str, str]]] = None,
                 providers_cfg: Optional[Mapping[str, Any]] = None,
                 sources: Optional[List[SecretSource]] = None):
        self._sources = sources if sources is not None else build_secret_sources(method, providers_cfg)
        self._map = mapping or {}

    def secret(self, provider: str, name: str = "api_key") -> Optional[str]:
        service = self._map.get(provider, {}).get(name, provider)
        for src in self._sources:
            val = src.get(provider, service)
            if val:
                return val
        return None
