from __future__ import annotations

from pathlib import Path

import pytest

from scripts.deploy.env_schema import (
    PLATFORM_SCHEMA,
    EnvValidationError,
    SecretsEnum,
    VarsEnum,
    apply_defaults,
    get_spec,
    parse_dotenv_file,
    parse_lock_timeout,
    secret_keys,
    validate_cross_field_rules,
    validate_known_keys,
    validate_required,
)


def _write(p: Path, text: str) -> Path:
    p.write_text(text, encoding="utf-8")
    return p


def test_parse_dotenv_preserves_empty_values(tmp_path: Path) -> None:
    p = _write(tmp_path / ".env", "GITHUB_TOKEN=\nWEBHOOK_SECRET=\n")
    kv = parse_dotenv_file(p)
    assert kv[SecretsEnum.GITHUB_TOKEN.value] == ""
    assert kv[SecretsEnum.WEBHOOK_SECRET.value] == ""


def test_platform_defaults_and_required(tmp_path: Path) -> None:
    p = _write(
        tmp_path / ".env",
        "GITHUB_ORG=acme\nDOMAIN=example.com\nCF_API_EMAIL=ops@example.com\nCF_DNS_API_TOKEN=cf-token\n",
    )
    kv = parse_dotenv_file(p)

    validate_known_keys(PLATFORM_SCHEMA, kv, context="platform")
    kv = apply_defaults(PLATFORM_SCHEMA, kv)

    assert kv[VarsEnum.CARRIER_DEPLOY_REF.value] == "refs/heads/main"
    assert kv[VarsEnum.CARRIER_REMOTE.value] == "origin"
    assert kv[VarsEnum.CARRIER_LOCK_TIMEOUT.value] == "600"
    assert kv[VarsEnum.WEBHOOK_HOOK_ID.value] == "deploy-app"
    # no default: derived from the platform dir at load time
    assert VarsEnum.CARRIER_APPS_DIR.value not in kv

    validate_required(PLATFORM_SCHEMA, kv, context="platform")


def test_missing_mandatory_keys_are_listed() -> None:
    kv = apply_defaults(PLATFORM_SCHEMA, {VarsEnum.GITHUB_ORG.value: "acme"})
    with pytest.raises(EnvValidationError) as exc:
        validate_required(PLATFORM_SCHEMA, kv, context="platform")
    assert exc.value.problems == ["Missing mandatory key(s): CF_API_EMAIL, CF_DNS_API_TOKEN, DOMAIN"]
    assert exc.value.format().startswith("[env] validation failed: platform")


def test_unknown_keys_fail(tmp_path: Path) -> None:
    p = _write(tmp_path / ".env", "NOT_A_KEY=1\n")
    kv = parse_dotenv_file(p)
    with pytest.raises(EnvValidationError):
        validate_known_keys(PLATFORM_SCHEMA, kv, context="platform")


def test_secret_keys_cover_tokens() -> None:
    assert set(secret_keys()) == {"GITHUB_TOKEN", "WEBHOOK_SECRET", "CF_DNS_API_TOKEN"}


def test_get_spec_unknown_key_raises() -> None:
    assert get_spec(PLATFORM_SCHEMA, VarsEnum.GITHUB_ORG).mandatory
    with pytest.raises(KeyError):
        get_spec((), VarsEnum.GITHUB_ORG)


@pytest.mark.parametrize(
    "raw,expected",
    [
        (None, 600),
        ("", 600),
        ("0", 0),
        (" 30 ", 30),
    ],
)
def test_parse_lock_timeout(raw, expected) -> None:
    assert parse_lock_timeout(raw, context="t") == expected


@pytest.mark.parametrize("raw", ["abc", "-1", "1.5"])
def test_parse_lock_timeout_rejects_invalid(raw) -> None:
    with pytest.raises(EnvValidationError):
        parse_lock_timeout(raw, context="t")


def test_cross_field_rules_accept_defaults() -> None:
    kv = apply_defaults(PLATFORM_SCHEMA, {SecretsEnum.WEBHOOK_SECRET.value: "0123456789abcdef"})
    validate_cross_field_rules(platform_kv=kv, context="platform")


def test_cross_field_rules_collect_all_problems() -> None:
    kv = {
        VarsEnum.CARRIER_DEPLOY_REF.value: "main",
        VarsEnum.CARRIER_LOCK_TIMEOUT.value: "soon",
        SecretsEnum.WEBHOOK_SECRET.value: "short",
        VarsEnum.CARRIER_CLONE_URL_TEMPLATE.value: "https://github.com/{org}/app.git",
    }
    with pytest.raises(EnvValidationError) as exc:
        validate_cross_field_rules(platform_kv=kv, context="platform")

    problems = exc.value.problems
    assert len(problems) == 4
    assert any("CARRIER_DEPLOY_REF" in p for p in problems)
    assert any("CARRIER_LOCK_TIMEOUT" in p for p in problems)
    assert any("WEBHOOK_SECRET" in p for p in problems)
    assert any("{repo}" in p for p in problems)
