from __future__ import annotations

from pathlib import Path

import pytest

from scripts.deploy.env_schema import EnvValidationError, VarsEnum
from scripts.deploy.validate_env import main, validate_platform_env

VALID = "GITHUB_ORG=acme\nDOMAIN=example.com\nCF_API_EMAIL=ops@example.com\nCF_DNS_API_TOKEN=cf-token\n"


def _env(tmp_path: Path, text: str) -> Path:
    p = tmp_path / ".env"
    p.write_text(text)
    return p


def test_bundled_template_matches_schema(repo_root: Path) -> None:
    kv = validate_platform_env(repo_root / ".env.example", overlay_process_env=False, strict_required=False)
    assert kv[VarsEnum.CARRIER_DEPLOY_REF.value] == "refs/heads/main"


def test_valid_file_gets_defaults(tmp_path: Path) -> None:
    kv = validate_platform_env(_env(tmp_path, VALID), overlay_process_env=False)
    assert kv[VarsEnum.GITHUB_ORG.value] == "acme"
    assert kv[VarsEnum.CARRIER_LOCK_TIMEOUT.value] == "600"


def test_unknown_key_fails(tmp_path: Path) -> None:
    with pytest.raises(EnvValidationError):
        validate_platform_env(_env(tmp_path, VALID + "PORTAINER_URL=x\n"), overlay_process_env=False)


def test_process_env_fills_missing_keys(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _env(tmp_path, "GITHUB_ORG=acme\nCF_API_EMAIL=ops@example.com\nCF_DNS_API_TOKEN=cf-token\n")
    with pytest.raises(EnvValidationError):
        validate_platform_env(path)

    monkeypatch.setenv(VarsEnum.DOMAIN.value, "example.com")
    assert validate_platform_env(path)[VarsEnum.DOMAIN.value] == "example.com"


def test_missing_file_exits(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        validate_platform_env(tmp_path / "nope.env")


def test_main_ok(tmp_path: Path, capsys) -> None:
    assert main(["--env-file", str(_env(tmp_path, VALID)), "--no-process-env"]) == 0
    assert "[env] ok" in capsys.readouterr().out


def test_main_reports_problems(tmp_path: Path, capsys) -> None:
    path = _env(tmp_path, "GITHUB_ORG=acme\nCARRIER_DEPLOY_REF=main\n")
    assert main(["--env-file", str(path), "--no-process-env"]) == 2
    err = capsys.readouterr().err
    assert "Missing mandatory key(s)" in err


def test_main_template_mode_still_checks_formats(tmp_path: Path) -> None:
    path = _env(tmp_path, "DOMAIN=\nCARRIER_DEPLOY_REF=main\n")
    assert main(["--env-file", str(path), "--no-process-env", "--template"]) == 2
    assert main(["--env-file", str(_env(tmp_path, "DOMAIN=\n")), "--no-process-env", "--template"]) == 0
