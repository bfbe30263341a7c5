"""Deterministic environment variable/secret schema for the platform.

This module is the single source of truth for:
- which keys exist (vars vs secrets)
- which of them are mandatory and/or have defaults
- how the platform `.env` is parsed and written back

Every other module reads keys through `VarsEnum`/`SecretsEnum`, never through
literal strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping

from dotenv import dotenv_values


class VarsEnum(str, Enum):
    # Platform location
    CARRIER_PLATFORM_DIR = "CARRIER_PLATFORM_DIR"
    CARRIER_APPS_DIR = "CARRIER_APPS_DIR"

    # Deployment trigger
    GITHUB_ORG = "GITHUB_ORG"
    CARRIER_DEPLOY_REF = "CARRIER_DEPLOY_REF"
    CARRIER_REMOTE = "CARRIER_REMOTE"
    CARRIER_COMPOSE_FILE = "CARRIER_COMPOSE_FILE"
    CARRIER_CLONE_URL_TEMPLATE = "CARRIER_CLONE_URL_TEMPLATE"
    CARRIER_LOCK_TIMEOUT = "CARRIER_LOCK_TIMEOUT"

    # Webhook dispatcher
    WEBHOOK_HOOK_ID = "WEBHOOK_HOOK_ID"
    WEBHOOK_EXECUTE_COMMAND = "WEBHOOK_EXECUTE_COMMAND"

    # Domain / TLS
    DOMAIN = "DOMAIN"
    CF_API_EMAIL = "CF_API_EMAIL"


class SecretsEnum(str, Enum):
    GITHUB_TOKEN = "GITHUB_TOKEN"
    WEBHOOK_SECRET = "WEBHOOK_SECRET"
    CF_DNS_API_TOKEN = "CF_DNS_API_TOKEN"


DEFAULT_PLATFORM_DIR = "/opt/carrier"
DEFAULT_DEPLOY_REF = "refs/heads/main"
DEFAULT_CLONE_URL_TEMPLATE = "https://github.com/{org}/{repo}.git"

MIN_WEBHOOK_SECRET_LENGTH = 16


@dataclass(frozen=True)
class EnvKeySpec:
    key: VarsEnum | SecretsEnum
    mandatory: bool
    default: str | None = None


class EnvValidationError(ValueError):
    def __init__(self, *, context: str, problems: list[str]):
        super().__init__("; ".join(problems))
        self.context = context
        self.problems = problems

    def format(self) -> str:
        lines = [f"[env] validation failed: {self.context}"]
        for p in self.problems:
            lines.append(f"- {p}")
        return "\n".join(lines)


PLATFORM_SCHEMA: tuple[EnvKeySpec, ...] = (
    EnvKeySpec(key=VarsEnum.CARRIER_PLATFORM_DIR, mandatory=False, default=DEFAULT_PLATFORM_DIR),
    # Derived from the platform dir when unset (see deploy_config).
    EnvKeySpec(key=VarsEnum.CARRIER_APPS_DIR, mandatory=False, default=None),
    EnvKeySpec(key=VarsEnum.GITHUB_ORG, mandatory=True),
    EnvKeySpec(key=VarsEnum.CARRIER_DEPLOY_REF, mandatory=False, default=DEFAULT_DEPLOY_REF),
    EnvKeySpec(key=VarsEnum.CARRIER_REMOTE, mandatory=False, default="origin"),
    EnvKeySpec(key=VarsEnum.CARRIER_COMPOSE_FILE, mandatory=False, default="docker-compose.yml"),
    EnvKeySpec(key=VarsEnum.CARRIER_CLONE_URL_TEMPLATE, mandatory=False, default=DEFAULT_CLONE_URL_TEMPLATE),
    EnvKeySpec(key=VarsEnum.CARRIER_LOCK_TIMEOUT, mandatory=False, default="600"),
    EnvKeySpec(key=VarsEnum.WEBHOOK_HOOK_ID, mandatory=False, default="deploy-app"),
    EnvKeySpec(key=VarsEnum.WEBHOOK_EXECUTE_COMMAND, mandatory=False, default="/usr/local/bin/carrier-deploy"),
    EnvKeySpec(key=VarsEnum.DOMAIN, mandatory=True),
    EnvKeySpec(key=VarsEnum.CF_API_EMAIL, mandatory=True),
    EnvKeySpec(key=SecretsEnum.CF_DNS_API_TOKEN, mandatory=True),
    EnvKeySpec(key=SecretsEnum.GITHUB_TOKEN, mandatory=False, default=None),
    EnvKeySpec(key=SecretsEnum.WEBHOOK_SECRET, mandatory=False, default=None),
)


def _schema_keys(schema: Iterable[EnvKeySpec]) -> set[str]:
    return {spec.key.value for spec in schema}


def secret_keys() -> list[str]:
    return [s.value for s in SecretsEnum]


def parse_dotenv_file(path: Path) -> dict[str, str]:
    """Parse dotenv file strictly.

    - Comments are ignored.
    - Keys are preserved even if they have empty values (""), so we can detect unknown keys.
    """
    kv: dict[str, str] = {}
    raw = dotenv_values(path)
    for k, v in raw.items():
        if k is None:
            continue
        key = str(k).strip()
        if not key:
            continue
        val = "" if v is None else str(v).strip()
        kv[key] = val
    return kv


def write_dotenv_values(*, path: Path, updates: Mapping[str, str], create: bool = False) -> None:
    """Update (or create) a dotenv file in-place.

    - Preserves existing lines/comments.
    - Replaces existing KEY=... lines for keys in `updates`.
    - Appends missing keys at the end in sorted order.
    """
    if not updates:
        return

    if not path.exists():
        if not create:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("# Generated/updated by scripts/deploy/platform_install.py\n\n")

    original_lines = path.read_text().splitlines()
    remaining = {k: str(v) for k, v in updates.items() if str(v).strip()}
    if not remaining:
        return

    out: list[str] = []
    for line in original_lines:
        s = line.strip()
        if not s or s.startswith("#") or "=" not in line:
            out.append(line)
            continue

        key = line.split("=", 1)[0].strip()
        if key in remaining:
            out.append(f"{key}={remaining.pop(key)}")
            continue

        out.append(line)

    if remaining:
        if out and out[-1].strip() != "":
            out.append("")
        for key in sorted(remaining.keys()):
            out.append(f"{key}={remaining[key]}")

    path.write_text("\n".join(out) + "\n")


def validate_known_keys(schema: Iterable[EnvKeySpec], kv: Mapping[str, str], *, context: str) -> None:
    allowed = _schema_keys(schema)
    unknown = sorted([k for k in kv.keys() if k not in allowed])
    if unknown:
        raise EnvValidationError(
            context=context,
            problems=["Unknown key(s): " + ", ".join(unknown)],
        )


def apply_defaults(schema: Iterable[EnvKeySpec], kv: dict[str, str]) -> dict[str, str]:
    out = dict(kv)
    for spec in schema:
        if spec.key.value in out and str(out.get(spec.key.value) or "").strip():
            continue
        if spec.default is None:
            continue
        out[spec.key.value] = spec.default
    return out


def validate_required(schema: Iterable[EnvKeySpec], kv: Mapping[str, str], *, context: str) -> None:
    missing: list[str] = []
    for spec in schema:
        if not spec.mandatory:
            continue
        val = str(kv.get(spec.key.value) or "").strip()
        if not val:
            missing.append(spec.key.value)
    if missing:
        raise EnvValidationError(context=context, problems=["Missing mandatory key(s): " + ", ".join(sorted(missing))])


def parse_lock_timeout(raw: str | None, *, context: str) -> int:
    value = str(raw or "").strip()
    if not value:
        return int(get_spec(PLATFORM_SCHEMA, VarsEnum.CARRIER_LOCK_TIMEOUT).default or 0)
    try:
        timeout = int(value)
    except ValueError:
        raise EnvValidationError(
            context=context,
            problems=[f"{VarsEnum.CARRIER_LOCK_TIMEOUT.value} must be an integer (got {value!r})"],
        ) from None
    if timeout < 0:
        raise EnvValidationError(
            context=context,
            problems=[f"{VarsEnum.CARRIER_LOCK_TIMEOUT.value} must be >= 0 (got {timeout})"],
        )
    return timeout


def validate_cross_field_rules(*, platform_kv: Mapping[str, str], context: str) -> None:
    """Extra validation for rules that can't be expressed with (mandatory/default) alone."""
    problems: list[str] = []

    ref = str(platform_kv.get(VarsEnum.CARRIER_DEPLOY_REF.value) or "").strip()
    if ref and not ref.startswith("refs/heads/"):
        problems.append(f"{VarsEnum.CARRIER_DEPLOY_REF.value} must be a branch ref like refs/heads/main (got {ref!r})")

    try:
        parse_lock_timeout(platform_kv.get(VarsEnum.CARRIER_LOCK_TIMEOUT.value), context=context)
    except EnvValidationError as e:
        problems.extend(e.problems)

    secret = str(platform_kv.get(SecretsEnum.WEBHOOK_SECRET.value) or "").strip()
    if secret and len(secret) < MIN_WEBHOOK_SECRET_LENGTH:
        problems.append(
            f"{SecretsEnum.WEBHOOK_SECRET.value} must be at least {MIN_WEBHOOK_SECRET_LENGTH} characters"
        )

    template = str(platform_kv.get(VarsEnum.CARRIER_CLONE_URL_TEMPLATE.value) or "").strip()
    if template and "{repo}" not in template:
        problems.append(f"{VarsEnum.CARRIER_CLONE_URL_TEMPLATE.value} must contain a {{repo}} placeholder")

    if problems:
        raise EnvValidationError(context=context, problems=problems)


def get_spec(schema: Iterable[EnvKeySpec], key: VarsEnum | SecretsEnum) -> EnvKeySpec:
    for spec in schema:
        if spec.key == key:
            return spec
    raise KeyError(key)
