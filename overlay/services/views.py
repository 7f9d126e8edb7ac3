"""Client-facing payloads derived from the merged configuration."""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Mapping

from overlay.services.key_policy import KEY_POLICY, MODEL_PROVIDERS
from overlay.services.paths import get_path
from overlay.services.resolver import PrecedenceResolver

_ALWAYS = (
    "appTitle",
    "helpAndFaqURL",
    "registrationEnabled",
    "socialLoginEnabled",
    "emailLoginEnabled",
    "passwordResetEnabled",
    "socialLogins",
)

# Only emitted when something resolves them.
_OPTIONAL = (
    "customFooter",
    "logoUrl",
    "faviconUrl",
    "backgroundImageUrl",
    "primaryColor",
    "privacyPolicy",
    "termsOfService",
    "allowedDomains",
)


def _interface(resolver: PrecedenceResolver) -> Dict[str, Any]:
    section = get_path(resolver.base, "interface")
    out: Dict[str, Any] = copy.deepcopy(dict(section)) if isinstance(section, Mapping) else {}
    for key in KEY_POLICY:
        if not key.startswith("interface."):
            continue
        value = resolver.resolve(key)
        if value is not None:
            out[key.split(".", 1)[1]] = value
    return out


def build_startup_config(resolver: PrecedenceResolver, generation: int) -> Dict[str, Any]:
    payload: Dict[str, Any] = {key: resolver.resolve(key) for key in _ALWAYS}
    payload.update(resolver.social_login_env_flags())
    for key in _OPTIONAL:
        value = resolver.resolve(key)
        if value:
            payload[key] = value

    interface = _interface(resolver)
    payload["interface"] = interface
    if interface.get("customWelcome"):
        payload["customWelcome"] = interface["customWelcome"]

    social = get_path(resolver.overrides, "socialLoginConfig")
    if isinstance(social, Mapping) and social:
        payload["socialLoginConfig"] = copy.deepcopy(dict(social))

    balance = get_path(resolver.base, "balance")
    balance_out: Dict[str, Any] = copy.deepcopy(dict(balance)) if isinstance(balance, Mapping) else {}
    start = resolver.resolve("balance.startBalance")
    if start is not None:
        balance_out["startBalance"] = start
    if balance_out:
        payload["balance"] = balance_out

    payload["envModelProviders"] = resolver.env_model_providers()
    payload["generation"] = generation
    return payload


def build_endpoints_config(merged: Mapping[str, Any]) -> Dict[str, Any]:
    endpoints = merged.get("endpoints")
    if not isinstance(endpoints, Mapping):
        return {}
    out: Dict[str, Any] = {}
    for name, cfg in endpoints.items():
        if name == "custom" and isinstance(cfg, list):
            for item in cfg:
                if isinstance(item, Mapping) and item.get("name"):
                    out[str(item["name"])] = {k: v for k, v in item.items() if k != "apiKey"}
            continue
        if isinstance(cfg, Mapping):
            out[str(name)] = {k: v for k, v in cfg.items() if k != "apiKey"}
    return out


def _default_models(cfg: Mapping[str, Any]) -> List[str]:
    models = cfg.get("models")
    if isinstance(models, Mapping):
        models = models.get("default")
    if isinstance(models, list):
        return [str(m) for m in models]
    return []


def build_models_config(merged: Mapping[str, Any]) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {}
    for name, cfg in build_endpoints_config(merged).items():
        models = _default_models(cfg)
        if models:
            out[name] = models
    for provider in MODEL_PROVIDERS:
        cfg = get_path(merged, f"modelProviders.{provider}")
        if isinstance(cfg, Mapping):
            models = _default_models(cfg)
            if models:
                out[provider] = models
    return out


__all__ = ["build_endpoints_config", "build_models_config", "build_startup_config"]
