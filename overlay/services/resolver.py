"""Read-time effective value resolution.

Sources are walked in a fixed order and the first defined, non-null value
wins: administrator override, environment binding, base configuration,
hardcoded default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from overlay.services.key_policy import KEY_POLICY, MODEL_PROVIDERS, KeySpec, parse_env, validate
from overlay.services.paths import get_path

SOURCE_OVERRIDE = "override"
SOURCE_ENV = "env"
SOURCE_BASE = "base"
SOURCE_DEFAULT = "default"

# Every variable in a tuple must be non-empty for the provider to count as
# configured by environment.
SOCIAL_LOGIN_ENV: Dict[str, Tuple[str, ...]] = {
    "github": ("GITHUB_CLIENT_ID", "GITHUB_CLIENT_SECRET"),
    "google": ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET"),
    "discord": ("DISCORD_CLIENT_ID", "DISCORD_CLIENT_SECRET"),
    "facebook": ("FACEBOOK_CLIENT_ID", "FACEBOOK_CLIENT_SECRET"),
    "apple": ("APPLE_CLIENT_ID", "APPLE_TEAM_ID", "APPLE_KEY_ID", "APPLE_PRIVATE_KEY_PATH"),
    "openid": (
        "OPENID_CLIENT_ID",
        "OPENID_CLIENT_SECRET",
        "OPENID_ISSUER",
        "OPENID_SESSION_SECRET",
    ),
    "saml": ("SAML_ENTRY_POINT", "SAML_ISSUER", "SAML_CERT", "SAML_SESSION_SECRET"),
}

MODEL_PROVIDER_ENV: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_KEY",
    "azure": "AZURE_API_KEY",
    "bedrock": "BEDROCK_AWS_ACCESS_KEY_ID",
}


@dataclass(frozen=True)
class Resolved:
    key: str
    value: Any
    source: str


class PrecedenceResolver:
    def __init__(
        self,
        overrides: Mapping[str, Any],
        base: Mapping[str, Any],
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.overrides = overrides or {}
        self.base = base or {}
        self.environ = os.environ if environ is None else environ

    def _env_value(self, spec: KeySpec) -> Any:
        if not spec.env:
            return None
        return parse_env(spec, self.environ.get(spec.env))

    def resolve_with_source(self, key: str) -> Resolved:
        spec = validate(key)
        value = get_path(self.overrides, key)
        if value is not None:
            return Resolved(key, value, SOURCE_OVERRIDE)
        value = self._env_value(spec)
        if value is not None:
            return Resolved(key, value, SOURCE_ENV)
        value = get_path(self.base, key)
        if value is not None:
            return Resolved(key, value, SOURCE_BASE)
        return Resolved(key, spec.default, SOURCE_DEFAULT)

    def resolve(self, key: str) -> Any:
        return self.resolve_with_source(key).value

    def display(self, key: str) -> Any:
        """Presentation value: negated for inverted booleans, the resolved value otherwise."""
        spec = validate(key)
        value = self.resolve(key)
        if spec.inverted and isinstance(value, bool):
            return not value
        return value

    def resolve_all(self) -> Dict[str, Any]:
        return {key: self.resolve(key) for key in sorted(KEY_POLICY)}

    def effective(self) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        for key in sorted(KEY_POLICY):
            spec = KEY_POLICY[key]
            resolved = self.resolve_with_source(key)
            display = resolved.value
            if spec.inverted and isinstance(display, bool):
                display = not display
            out[key] = {
                "value": resolved.value,
                "source": resolved.source,
                "display": display,
                "kind": spec.kind.value,
                "restartRequired": spec.restart_required,
            }
        return out

    # -- configured-by-environment detection --

    def _set(self, name: str) -> bool:
        return bool((self.environ.get(name) or "").strip())

    def social_login_env_flags(self) -> Dict[str, bool]:
        flags = {
            f"{provider}LoginEnabled": all(self._set(var) for var in names)
            for provider, names in SOCIAL_LOGIN_ENV.items()
        }
        # OpenID takes priority over SAML when both are configured.
        if flags["openidLoginEnabled"]:
            flags["samlLoginEnabled"] = False
        return flags

    def env_model_providers(self) -> List[str]:
        return [p for p in MODEL_PROVIDERS if self._set(MODEL_PROVIDER_ENV[p])]


__all__ = [
    "MODEL_PROVIDER_ENV",
    "PrecedenceResolver",
    "Resolved",
    "SOCIAL_LOGIN_ENV",
    "SOURCE_BASE",
    "SOURCE_DEFAULT",
    "SOURCE_ENV",
    "SOURCE_OVERRIDE",
]
