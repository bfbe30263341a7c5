#!/usr/bin/env python3
"""GitHub webhook dispatch configuration (`hooks.json`) for the deploy trigger.

The dispatcher itself (adnanh/webhook) is third-party. This module:
- renders the hook definition that maps a push payload to `carrier-deploy <repository.name> <ref>`
- evaluates a saved payload against that definition (`simulate`), so operators can check
  which command a delivery would run
- posts a GitHub-style push payload to a running dispatcher (`send`), signed with the
  webhook secret when one is configured
"""

from __future__ import annotations

import argparse
import hashlib
import hmac
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import requests
import urllib3

from scripts.deploy.deploy_config import read_platform_env, resolve_platform_dir
from scripts.deploy.env_schema import PLATFORM_SCHEMA, SecretsEnum, VarsEnum, get_spec
from scripts.deploy.log_helpers import register_secret, setup_logging

logger = logging.getLogger("webhook_hooks")

SIGNATURE_HEADER = "X-Hub-Signature-256"
EVENT_HEADER = "X-GitHub-Event"


@dataclass
class WebhookRequest:
    """One incoming delivery as the dispatcher sees it."""

    payload: Mapping[str, Any]
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str) -> str:
        # HTTP header names are case-insensitive.
        for key, value in self.headers.items():
            if key.lower() == name.lower():
                return str(value)
        return ""


def build_deploy_hook(
    *,
    hook_id: str,
    execute_command: str,
    production_ref: str,
    secret: str = "",
) -> dict[str, Any]:
    rules: list[dict[str, Any]] = [
        {
            "match": {
                "type": "value",
                "value": production_ref,
                "parameter": {"source": "payload", "name": "ref"},
            }
        }
    ]
    if secret:
        rules.append(
            {
                "match": {
                    "type": "payload-hmac-sha256",
                    "secret": secret,
                    "parameter": {"source": "header", "name": SIGNATURE_HEADER},
                }
            }
        )

    return {
        "id": hook_id,
        "execute-command": execute_command,
        "pass-arguments-to-command": [
            {"source": "payload", "name": "repository.name"},
            {"source": "payload", "name": "ref"},
        ],
        "trigger-rule": {"and": rules},
    }


def render_hooks_json(hooks: list[dict[str, Any]]) -> str:
    return json.dumps(hooks, indent=2) + "\n"


def get_payload_value(payload: Mapping[str, Any], dotted_name: str) -> Any:
    """Resolve `repository.name`-style paths; list items are addressed by index."""
    current: Any = payload
    for part in dotted_name.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


def sign_payload(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def _resolve_parameter(parameter: Mapping[str, str], request: WebhookRequest) -> Any:
    source = parameter.get("source")
    name = parameter.get("name", "")
    if source == "payload":
        return get_payload_value(request.payload, name)
    if source == "header":
        return request.header(name)
    raise ValueError(f"Unsupported parameter source: {source!r}")


def _match(match: Mapping[str, Any], request: WebhookRequest) -> bool:
    match_type = match.get("type")
    value = _resolve_parameter(match.get("parameter") or {}, request)
    if match_type == "value":
        return value is not None and str(value) == str(match.get("value"))
    if match_type == "payload-hmac-sha256":
        signature = str(value or "")
        expected = sign_payload(request.body, str(match.get("secret") or ""))
        return bool(signature) and hmac.compare_digest(signature, expected)
    raise ValueError(f"Unsupported match type: {match_type!r}")


def rule_matches(rule: Mapping[str, Any], request: WebhookRequest) -> bool:
    """Evaluate an `and`/`or`/`not`/`match` trigger rule."""
    if "and" in rule:
        return all(rule_matches(sub, request) for sub in rule["and"])
    if "or" in rule:
        return any(rule_matches(sub, request) for sub in rule["or"])
    if "not" in rule:
        return not rule_matches(rule["not"], request)
    if "match" in rule:
        return _match(rule["match"], request)
    raise ValueError(f"Unsupported trigger rule: {sorted(rule)}")


def extract_command_args(hook: Mapping[str, Any], request: WebhookRequest) -> list[str]:
    args: list[str] = []
    for parameter in hook.get("pass-arguments-to-command") or []:
        value = _resolve_parameter(parameter, request)
        args.append("" if value is None else str(value))
    return args


def dispatch_command(hooks: list[Mapping[str, Any]], hook_id: str, request: WebhookRequest) -> list[str] | None:
    """Return the argv the dispatcher would execute, or None when the rule does not match."""
    hook = next((h for h in hooks if h.get("id") == hook_id), None)
    if hook is None:
        raise SystemExit(f"Hook '{hook_id}' not found")
    rule = hook.get("trigger-rule")
    if rule and not rule_matches(rule, request):
        return None
    return [str(hook["execute-command"]), *extract_command_args(hook, request)]


def build_push_payload(*, repo_name: str, ref: str, org: str = "") -> dict[str, Any]:
    full_name = f"{org}/{repo_name}" if org else repo_name
    return {
        "ref": ref,
        "repository": {"name": repo_name, "full_name": full_name},
    }


def send_push_event(*, url: str, payload: Mapping[str, Any], secret: str = "", insecure: bool = False) -> requests.Response:
    body = json.dumps(payload).encode()
    headers = {"Content-Type": "application/json", EVENT_HEADER: "push"}
    if secret:
        headers[SIGNATURE_HEADER] = sign_payload(body, secret)
    try:
        response = requests.post(url, data=body, headers=headers, verify=not insecure, timeout=20)
    except requests.RequestException as e:
        raise SystemExit(f"Webhook delivery failed at {url}: {e}") from e
    if not response.ok:
        details = str(response.text or "").strip().replace("\n", " ")[:200]
        raise SystemExit(f"Webhook delivery failed ({response.status_code}) at {url}: {details}")
    return response


def _setting(key: VarsEnum | SecretsEnum, file_kv: Mapping[str, str]) -> str:
    resolved = str(os.getenv(key.value) or "").strip()
    if not resolved:
        resolved = str(file_kv.get(key.value) or "").strip()
    if not resolved:
        resolved = get_spec(PLATFORM_SCHEMA, key).default or ""
    return resolved


def hook_from_settings(file_kv: Mapping[str, str]) -> dict[str, Any]:
    secret = _setting(SecretsEnum.WEBHOOK_SECRET, file_kv)
    register_secret(secret)
    return build_deploy_hook(
        hook_id=_setting(VarsEnum.WEBHOOK_HOOK_ID, file_kv),
        execute_command=_setting(VarsEnum.WEBHOOK_EXECUTE_COMMAND, file_kv),
        production_ref=_setting(VarsEnum.CARRIER_DEPLOY_REF, file_kv),
        secret=secret,
    )


def _cmd_render(args: argparse.Namespace, file_kv: Mapping[str, str]) -> None:
    content = render_hooks_json([hook_from_settings(file_kv)])
    if args.output == "-":
        print(content, end="")
        return
    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(content)
    logger.info(f"✅ [webhook] Wrote {output}")


def _cmd_simulate(args: argparse.Namespace, file_kv: Mapping[str, str]) -> None:
    hooks_path = Path(args.hooks)
    hooks = json.loads(hooks_path.read_text()) if hooks_path.exists() else [hook_from_settings(file_kv)]
    body = Path(args.payload).read_bytes()
    headers: dict[str, str] = {}
    for raw in args.header or []:
        name, _, value = raw.partition(":")
        headers[name.strip()] = value.strip()
    request = WebhookRequest(payload=json.loads(body), headers=headers, body=body)

    hook_id = args.hook_id or _setting(VarsEnum.WEBHOOK_HOOK_ID, file_kv)
    argv = dispatch_command(hooks, hook_id, request)
    if argv is None:
        logger.info(f"[webhook] Hook '{hook_id}' would NOT trigger for this payload")
        return
    logger.info(f"[webhook] Hook '{hook_id}' would run: {' '.join(argv)}")


def _cmd_send(args: argparse.Namespace, file_kv: Mapping[str, str]) -> None:
    secret = args.secret if args.secret is not None else _setting(SecretsEnum.WEBHOOK_SECRET, file_kv)
    register_secret(secret)
    if args.insecure:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    payload = build_push_payload(
        repo_name=args.repo,
        ref=args.ref or _setting(VarsEnum.CARRIER_DEPLOY_REF, file_kv),
        org=_setting(VarsEnum.GITHUB_ORG, file_kv),
    )
    response = send_push_event(url=args.url, payload=payload, secret=secret, insecure=args.insecure)
    logger.info(f"✅ [webhook] Delivered push event for {args.repo} ({response.status_code})")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Render, simulate and test the deploy webhook")
    parser.add_argument("--platform-dir", default=None, help="Platform root holding .env (default: /opt/carrier)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    render = subparsers.add_parser("render", help="Write hooks.json for the webhook dispatcher")
    render.add_argument("--output", default="-", help="Output path, '-' for stdout (default: -)")
    render.set_defaults(func=_cmd_render)

    simulate = subparsers.add_parser("simulate", help="Show the command a saved payload would trigger")
    simulate.add_argument("--payload", required=True, help="Path to a JSON push payload")
    simulate.add_argument("--hooks", default="config/webhook/hooks.json", help="hooks.json to evaluate")
    simulate.add_argument("--hook-id", default=None, help="Hook id (default: WEBHOOK_HOOK_ID or deploy-app)")
    simulate.add_argument("--header", action="append", help="Request header as 'Name: value' (repeatable)")
    simulate.set_defaults(func=_cmd_simulate)

    send = subparsers.add_parser("send", help="POST a push event to a running dispatcher")
    send.add_argument("--url", required=True, help="Hook URL, e.g. https://webhook.example.com/hooks/deploy-app")
    send.add_argument("--repo", required=True, help="Repository name to deploy")
    send.add_argument("--ref", default=None, help="Ref to send (default: the production ref)")
    send.add_argument("--secret", default=None, help="Signing secret (default: WEBHOOK_SECRET)")
    send.add_argument("--insecure", action="store_true", help="Skip TLS verification")
    send.set_defaults(func=_cmd_send)

    args = parser.parse_args(argv)
    setup_logging()
    file_kv = read_platform_env(resolve_platform_dir(args.platform_dir))
    args.func(args, file_kv)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
