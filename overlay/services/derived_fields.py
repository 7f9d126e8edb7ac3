"""Composite override fields recomputed from their constituent toggles.

A small static graph: trigger patterns -> derived key -> pure function of the
override tree. Derived values skip the allow-list (they are system generated)
but are still coerced and shape-checked against their declared kind.
"""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any, Callable, Dict, List, Mapping, Tuple

from overlay.services.key_policy import SOCIAL_LOGIN_PROVIDERS, KeySpec, Kind, coerce_checked
from overlay.services.paths import get_path


@dataclass(frozen=True)
class DerivedField:
    target: str
    kind: Kind
    triggers: Tuple[str, ...]
    compute: Callable[[Mapping[str, Any]], Any]

    def triggered_by(self, keys: List[str]) -> bool:
        return any(fnmatchcase(key, pattern) for key in keys for pattern in self.triggers)


def enabled_social_logins(tree: Mapping[str, Any]) -> List[str]:
    """Providers whose ``socialLoginConfig.<p>.enabled`` is true, in registry order."""
    return [
        provider
        for provider in SOCIAL_LOGIN_PROVIDERS
        if get_path(tree, f"socialLoginConfig.{provider}.enabled") is True
    ]


DERIVED_FIELDS: Tuple[DerivedField, ...] = (
    DerivedField(
        target="socialLogins",
        kind=Kind.STRING_ARRAY,
        triggers=("socialLoginConfig.*.enabled",),
        compute=enabled_social_logins,
    ),
)


def derive(tree: Mapping[str, Any], changed_keys: List[str]) -> Dict[str, Any]:
    """Recompute every derived field triggered by ``changed_keys`` against ``tree``."""
    out: Dict[str, Any] = {}
    for field in DERIVED_FIELDS:
        if not field.triggered_by(changed_keys):
            continue
        spec = KeySpec(field.target, field.kind)
        out[field.target] = coerce_checked(spec, field.compute(tree))
    return out


__all__ = ["DerivedField", "DERIVED_FIELDS", "derive", "enabled_social_logins"]
