"""Allow-list of overridable dot-path keys and per-kind value coercion.

Pure lookup tables and functions: no I/O, no state. The same table backs the
write path (``validate`` + ``coerce``), the precedence resolver (environment
bindings and hardcoded defaults) and any offline validation tooling.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from overlay.errors import InvalidValue, KeyNotAllowed


class Kind(str, Enum):
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    STRING_ARRAY = "stringArray"
    OBJECT = "object"


@dataclass(frozen=True)
class KeySpec:
    path: str
    kind: Kind
    # Environment variable feeding the second precedence tier, if any.
    env: Optional[str] = None
    default: Any = None
    # Presentation only: the toggle's user-facing meaning is the negation.
    inverted: bool = False
    # Only picked up when the hosting process next starts.
    restart_required: bool = False


SOCIAL_LOGIN_PROVIDERS: Tuple[str, ...] = (
    "github",
    "google",
    "discord",
    "openid",
    "facebook",
    "apple",
    "saml",
)

MODEL_PROVIDERS: Tuple[str, ...] = ("openai", "anthropic", "google", "azure", "bedrock")

_INTERFACE_TOGGLES: Tuple[str, ...] = (
    "modelSelect",
    "parameters",
    "sidePanel",
    "presets",
    "prompts",
    "memories",
    "bookmarks",
    "multiConvo",
    "agents",
    "endpointsMenu",
    "plugins",
    "webSearch",
    "runCode",
    "fileSearch",
    "temporaryChat",
    "betaFeatures",
)


def _build_policy() -> Dict[str, KeySpec]:
    specs: List[KeySpec] = [
        KeySpec("interface.customWelcome", Kind.STRING),
        KeySpec("interface.hideNoConfigModels", Kind.BOOLEAN, default=False, inverted=True),
        # branding
        KeySpec("appTitle", Kind.STRING, env="APP_TITLE", default="LibreChat"),
        KeySpec(
            "helpAndFaqURL", Kind.STRING, env="HELP_AND_FAQ_URL", default="https://librechat.ai"
        ),
        KeySpec("customFooter", Kind.STRING, env="CUSTOM_FOOTER"),
        KeySpec("logoUrl", Kind.STRING),
        KeySpec("faviconUrl", Kind.STRING),
        KeySpec("backgroundImageUrl", Kind.STRING),
        KeySpec("primaryColor", Kind.STRING),
        # legal
        KeySpec("privacyPolicy", Kind.OBJECT),
        KeySpec("termsOfService", Kind.OBJECT),
        # registration
        KeySpec("registrationEnabled", Kind.BOOLEAN, env="ALLOW_REGISTRATION", default=False),
        KeySpec("socialLoginEnabled", Kind.BOOLEAN, env="ALLOW_SOCIAL_LOGIN", default=False),
        KeySpec("emailLoginEnabled", Kind.BOOLEAN, env="ALLOW_EMAIL_LOGIN", default=True),
        KeySpec("passwordResetEnabled", Kind.BOOLEAN, env="ALLOW_PASSWORD_RESET", default=False),
        KeySpec("socialLogins", Kind.STRING_ARRAY, default=[]),
        KeySpec("allowedDomains", Kind.STRING_ARRAY, default=[]),
        # agents / balance
        KeySpec("endpoints.agents.recursionLimit", Kind.NUMBER, default=25, restart_required=True),
        KeySpec(
            "endpoints.agents.maxRecursionLimit", Kind.NUMBER, default=100, restart_required=True
        ),
        KeySpec("balance.startBalance", Kind.NUMBER, env="START_BALANCE"),
    ]
    for toggle in _INTERFACE_TOGGLES:
        specs.append(KeySpec(f"interface.{toggle}", Kind.BOOLEAN, default=True))
    for provider in SOCIAL_LOGIN_PROVIDERS:
        specs.append(KeySpec(f"socialLoginConfig.{provider}.enabled", Kind.BOOLEAN, default=False))
    for provider in MODEL_PROVIDERS:
        specs.append(KeySpec(f"modelProviders.{provider}", Kind.OBJECT, restart_required=True))
    return {spec.path: spec for spec in specs}


KEY_POLICY: Dict[str, KeySpec] = _build_policy()

_TRUE = {"1", "true", "t", "yes", "y", "on"}
_FALSE = {"0", "false", "f", "no", "n", "off"}


def allowed_keys() -> List[str]:
    return sorted(KEY_POLICY)


def lookup(key: str) -> Optional[KeySpec]:
    return KEY_POLICY.get(key)


def validate(key: Any) -> KeySpec:
    """Return the spec for ``key`` or raise ``KeyNotAllowed``."""
    if not isinstance(key, str) or key not in KEY_POLICY:
        raise KeyNotAllowed(str(key))
    return KEY_POLICY[key]


_BASE10 = re.compile(r"[+-]?[0-9]+")


def _split_csv(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def _parse_int(text: str) -> Optional[int]:
    """Optional sign and ASCII digits; surrounding whitespace is ignored."""
    text = text.strip()
    if not _BASE10.fullmatch(text):
        return None
    return int(text, 10)


def coerce(kind: Kind, raw: Any) -> Any:
    """Apply the kind's wire coercion. Values of other shapes pass through untouched."""
    if kind is Kind.NUMBER and isinstance(raw, str):
        parsed = _parse_int(raw)
        return raw if parsed is None else parsed
    if kind is Kind.STRING_ARRAY and isinstance(raw, str):
        return _split_csv(raw)
    return raw


def _shape_ok(kind: Kind, value: Any) -> bool:
    if kind is Kind.BOOLEAN:
        return isinstance(value, bool)
    if kind is Kind.NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if kind is Kind.STRING:
        return isinstance(value, str)
    if kind is Kind.STRING_ARRAY:
        return isinstance(value, list) and all(isinstance(item, str) for item in value)
    if kind is Kind.OBJECT:
        return isinstance(value, Mapping)
    raise AssertionError(f"unhandled kind {kind!r}")  # pragma: no cover


def coerce_checked(spec: KeySpec, raw: Any) -> Any:
    """Coerce ``raw`` and reject anything that does not fit the key's kind.

    ``None`` is returned unchanged: it means "drop the override at this path".
    """
    if raw is None:
        return None
    value = coerce(spec.kind, raw)
    if not _shape_ok(spec.kind, value):
        if spec.kind is Kind.NUMBER and isinstance(value, str):
            raise InvalidValue(spec.path, "expected a base-10 integer")
        raise InvalidValue(spec.path, f"expected {spec.kind.value}")
    if isinstance(value, Mapping):
        return dict(value)
    return value


def parse_env(spec: KeySpec, raw: Optional[str]) -> Any:
    """Parse an environment value for ``spec``; ``None`` when unset, blank or unparseable."""
    if raw is None or raw.strip() == "":
        return None
    text = raw.strip()
    if spec.kind is Kind.BOOLEAN:
        low = text.lower()
        if low in _TRUE:
            return True
        if low in _FALSE:
            return False
        return None
    if spec.kind is Kind.NUMBER:
        return _parse_int(text)
    if spec.kind is Kind.STRING_ARRAY:
        return _split_csv(text)
    if spec.kind is Kind.STRING:
        return raw
    return None


def restart_required(keys: Iterable[str]) -> bool:
    return any(KEY_POLICY[k].restart_required for k in keys if k in KEY_POLICY)


__all__ = [
    "Kind",
    "KeySpec",
    "KEY_POLICY",
    "SOCIAL_LOGIN_PROVIDERS",
    "MODEL_PROVIDERS",
    "allowed_keys",
    "lookup",
    "validate",
    "coerce",
    "coerce_checked",
    "parse_env",
    "restart_required",
]
