#!/usr/bin/env python3
"""Validate the platform `.env` against the deterministic schema.

This is intended to run:
- after editing `/opt/carrier/.env` (before starting the platform)
- in CI, against `.env.example`, to keep the template in sync with the schema

Strict by default:
- unknown keys => error
- missing mandatory keys => error
- cross-field rules (deploy ref, lock timeout, webhook secret length) => error
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from scripts.deploy.env_schema import (
    PLATFORM_SCHEMA,
    EnvValidationError,
    apply_defaults,
    parse_dotenv_file,
    validate_cross_field_rules,
    validate_known_keys,
    validate_required,
)


def _env_subset(schema_keys: set[str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for k in schema_keys:
        v = os.getenv(k)
        if v is None:
            continue
        v = str(v).strip()
        if not v:
            continue
        out[k] = v
    return out


def validate_platform_env(platform_path: Path | None, *, overlay_process_env: bool = True, strict_required: bool = True) -> dict[str, str]:
    context = "platform (.env + env)"

    file_kv: dict[str, str] = {}
    if platform_path is not None:
        if not platform_path.exists():
            raise SystemExit(f"[env] Missing platform env file: {platform_path}")
        file_kv = parse_dotenv_file(platform_path)
        validate_known_keys(PLATFORM_SCHEMA, file_kv, context=context)

    merged = dict(file_kv)
    if overlay_process_env:
        merged.update(_env_subset({spec.key.value for spec in PLATFORM_SCHEMA}))

    merged = apply_defaults(PLATFORM_SCHEMA, merged)
    if strict_required:
        validate_required(PLATFORM_SCHEMA, merged, context=context)
    validate_cross_field_rules(platform_kv=merged, context=context)
    return merged


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Validate the platform .env against the schema")
    ap.add_argument("--env-file", default=".env", help="Path to the platform env file (default: .env)")
    ap.add_argument(
        "--no-process-env",
        action="store_true",
        help="Validate the file alone, without overlaying process env vars",
    )
    ap.add_argument(
        "--template",
        action="store_true",
        help="Validate a template such as .env.example: keys and formats only, empty mandatory values allowed",
    )

    args = ap.parse_args(argv)
    env_path = Path(args.env_file).expanduser().resolve()

    try:
        validate_platform_env(
            env_path,
            overlay_process_env=not args.no_process_env,
            strict_required=not args.template,
        )
    except EnvValidationError as e:
        print(e.format(), file=sys.stderr)
        return 2

    print("[env] ok")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
