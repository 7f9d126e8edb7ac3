from __future__ import annotations

import pytest

from overlay.errors import InvalidValue, KeyNotAllowed
from overlay.services import key_policy
from overlay.services.key_policy import KeySpec, Kind, coerce, coerce_checked, parse_env


def test_validate_rejects_unknown_key_as_client_error():
    with pytest.raises(KeyNotAllowed) as exc:
        key_policy.validate("interface.notAThing")
    assert exc.value.status_code == 400
    assert "not allowed" in str(exc.value)


def test_validate_returns_spec_for_allowed_key():
    spec = key_policy.validate("interface.sidePanel")
    assert spec.kind is Kind.BOOLEAN
    assert spec.default is True


def test_allowed_keys_cover_provider_toggles_and_model_providers():
    keys = key_policy.allowed_keys()
    assert "socialLoginConfig.github.enabled" in keys
    assert "socialLoginConfig.saml.enabled" in keys
    assert "modelProviders.anthropic" in keys
    assert keys == sorted(keys)


def test_coerce_number_parses_base10_strings():
    assert coerce(Kind.NUMBER, "5") == 5
    assert coerce(Kind.NUMBER, " 42 ") == 42
    assert coerce(Kind.NUMBER, 7) == 7


def test_coerce_number_passes_unparseable_strings_through():
    assert coerce(Kind.NUMBER, "abc") == "abc"


def test_coerce_number_accepts_only_plain_decimal_digits():
    assert coerce(Kind.NUMBER, "-3") == -3
    assert coerce(Kind.NUMBER, "+8") == 8
    assert coerce(Kind.NUMBER, "1_000") == "1_000"
    assert coerce(Kind.NUMBER, "0x10") == "0x10"
    assert coerce(Kind.NUMBER, "1.5") == "1.5"
    assert coerce(Kind.NUMBER, "\u0661\u0662") == "\u0661\u0662"
    spec = key_policy.validate("endpoints.agents.recursionLimit")
    with pytest.raises(InvalidValue):
        coerce_checked(spec, "1_000")
    assert parse_env(key_policy.validate("balance.startBalance"), "2_000") is None


def test_coerce_string_array_splits_trims_and_drops_empty():
    assert coerce(Kind.STRING_ARRAY, "a, b , c") == ["a", "b", "c"]
    assert coerce(Kind.STRING_ARRAY, "a,,b, ") == ["a", "b"]
    assert coerce(Kind.STRING_ARRAY, ["x", "y"]) == ["x", "y"]


def test_coerce_leaves_other_kinds_untouched():
    assert coerce(Kind.BOOLEAN, "true") == "true"
    assert coerce(Kind.STRING, "5") == "5"
    payload = {"externalUrl": "https://x"}
    assert coerce(Kind.OBJECT, payload) is payload


def test_coerce_checked_rejects_non_numeric_string():
    spec = key_policy.validate("endpoints.agents.recursionLimit")
    with pytest.raises(InvalidValue) as exc:
        coerce_checked(spec, "lots")
    assert "base-10" in str(exc.value)


def test_coerce_checked_rejects_shape_mismatch():
    with pytest.raises(InvalidValue):
        coerce_checked(key_policy.validate("interface.sidePanel"), "yes")
    with pytest.raises(InvalidValue):
        coerce_checked(key_policy.validate("appTitle"), 12)
    with pytest.raises(InvalidValue):
        coerce_checked(key_policy.validate("allowedDomains"), ["a.com", 3])
    with pytest.raises(InvalidValue):
        coerce_checked(key_policy.validate("privacyPolicy"), "https://x")


def test_coerce_checked_rejects_bool_for_number():
    with pytest.raises(InvalidValue):
        coerce_checked(KeySpec("n", Kind.NUMBER), True)


def test_coerce_checked_none_means_remove():
    assert coerce_checked(key_policy.validate("appTitle"), None) is None


def test_coerce_checked_copies_objects():
    raw = {"externalUrl": "https://x", "openNewTab": True}
    out = coerce_checked(key_policy.validate("termsOfService"), raw)
    assert out == raw
    assert out is not raw


def test_parse_env_booleans_and_blank():
    spec = key_policy.validate("registrationEnabled")
    assert parse_env(spec, "TRUE") is True
    assert parse_env(spec, "off") is False
    assert parse_env(spec, "") is None
    assert parse_env(spec, "   ") is None
    assert parse_env(spec, "maybe") is None
    assert parse_env(spec, None) is None


def test_parse_env_number_and_string():
    assert parse_env(key_policy.validate("balance.startBalance"), "2000") == 2000
    assert parse_env(key_policy.validate("balance.startBalance"), "lots") is None
    assert parse_env(key_policy.validate("appTitle"), "Acme Chat") == "Acme Chat"


def test_restart_required_only_for_flagged_keys():
    assert key_policy.restart_required(["endpoints.agents.recursionLimit"]) is True
    assert key_policy.restart_required(["modelProviders.openai"]) is True
    assert key_policy.restart_required(["appTitle", "interface.sidePanel"]) is False
    assert key_policy.restart_required([]) is False


def test_hide_no_config_models_is_inverted_for_display():
    assert key_policy.validate("interface.hideNoConfigModels").inverted is True
    assert key_policy.validate("interface.sidePanel").inverted is False
