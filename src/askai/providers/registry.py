from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional, Type
from importlib import import_module


class ProviderRegistry:
    """
    Factory keyed on provider name. One adapter class may be registered under
    several names, each with its own default provider settings (e.g. base_url).
    """
    _classes: Dict[str, Type] = {}
    _defaults: Dict[str, Dict[str, Any]] = {}

    @classmethod
    def register(cls, name: str, **defaults: Any) -> Callable[[Type], Type]:
        name = name.lower()
        def deco(klass: Type) -> Type:
            cls._classes[name] = klass
            cls._defaults[name] = dict(defaults)
            return klass
        return deco

    @classmethod
    def get(cls, name: str) -> Type:
        key = name.lower()
        if key not in cls._classes:
            raise KeyError(f"Provider '{name}' not registered")
        return cls._classes[key]

    @classmethod
    def names(cls) -> List[str]:
        return sorted(cls._classes)

    @classmethod
    def create(cls, name: str, *, llm_config, provider_cfg: Optional[Dict[str, Any]] = None, secrets=None):
        key = name.lower()
        klass = cls.get(key)
        settings = {**cls._defaults.get(key, {}), **(provider_cfg or {})}
        return klass.create(provider_name=key, llm_config=llm_config, provider_cfg=settings, secrets=secrets)

    @classmethod
    def ensure_imports(cls) -> None:
        """
        Import built-in adapters so their @register decorators run.
        Call once at bootstrap before get().
        """
        import_module("askai.providers.openai_adapter")
        import_module("askai.providers.anthropic_adapter")
        import_module("askai.providers.echo")
