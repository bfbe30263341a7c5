#!/usr/bin/env python3
"""One-command installation of the Docker Compose VPS platform.

Sets up Docker, the compose plugin and the firewall on an Ubuntu/Debian host,
copies this bundle into the install directory, generates the Traefik and
webhook configuration, and starts Traefik + Portainer + the webhook
dispatcher.

Must run as root. Shells out to `docker`, `apt-get`, `ufw` and `usermod`.
"""

from __future__ import annotations

import argparse
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Callable, Mapping

import yaml
from dotenv import dotenv_values

from scripts.deploy.command_runner import run_command
from scripts.deploy.compose_helpers import get_container_names, load_compose_descriptor
from scripts.deploy.env_schema import (
    PLATFORM_SCHEMA,
    SecretsEnum,
    VarsEnum,
    apply_defaults,
    parse_dotenv_file,
    write_dotenv_values,
)
from scripts.deploy.log_helpers import setup_logging
from scripts.deploy.webhook_hooks import build_deploy_hook, render_hooks_json

logger = logging.getLogger("platform_install")

ENV_SUDO_USER = "SUDO_USER"

DEFAULT_INSTALL_DIR = Path("/opt/carrier")
MIN_RAM_MB = 2048
MIN_DISK_GB = 30
SUPPORTED_OS_IDS = {"ubuntu", "debian"}
FIREWALL_PORTS = ("22/tcp", "80/tcp", "443/tcp")
PLATFORM_NETWORKS = ("web", "internal")
PLATFORM_DIRS = ("apps", "config/traefik", "config/webhook", "data")
DEFAULT_PLATFORM_SERVICES = ("traefik", "portainer", "webhook")
BUNDLE_IGNORE = (".git", ".github", "tests", "__pycache__", ".pytest_cache", "*.egg-info", ".env")

BANNER = """\
╔════════════════════════════════════════════╗
║   Docker Compose Multi-App VPS Platform    ║
║   Portainer + Traefik + GitHub Integration ║
╚════════════════════════════════════════════╝"""


def build_docker_install_cmd() -> list[str]:
    return ["sh", "-c", "curl -fsSL https://get.docker.com | sh"]


def build_usermod_docker_cmd(*, user: str) -> list[str]:
    return ["usermod", "-aG", "docker", user]


def build_compose_version_cmd() -> list[str]:
    return ["docker", "compose", "version"]


def build_apt_update_cmd() -> list[str]:
    return ["apt-get", "update"]


def build_apt_install_cmd(*, packages: list[str]) -> list[str]:
    return ["apt-get", "install", "-y", *packages]


def build_ufw_allow_cmd(*, port: str) -> list[str]:
    return ["ufw", "allow", port]


def build_ufw_enable_cmd() -> list[str]:
    return ["ufw", "--force", "enable"]


def build_network_create_cmd(*, name: str) -> list[str]:
    return ["docker", "network", "create", name]


def build_platform_up_cmd() -> list[str]:
    return ["docker", "compose", "up", "-d"]


def build_running_containers_cmd() -> list[str]:
    return ["docker", "ps", "--format", "{{.Names}}"]


def resolve_source_dir(cli_value: str | None = None, *, cwd: Path | None = None) -> Path:
    """Bundle to install: `--source-dir`, else the current directory. It must hold the platform descriptor."""
    source = Path(cli_value) if cli_value else (cwd or Path.cwd())
    if not (source / "docker-compose.yml").is_file():
        raise SystemExit(f"No docker-compose.yml in {source}; run from the platform bundle or pass --source-dir")
    return source


def check_root(*, euid: int | None = None) -> None:
    current = os.geteuid() if euid is None else euid
    if current != 0:
        raise SystemExit("This script must be run as root")


def read_os_release(path: Path = Path("/etc/os-release")) -> dict[str, str]:
    if not path.exists():
        raise SystemExit("Cannot determine OS version")
    return {k: str(v or "") for k, v in dotenv_values(path).items() if k}


def read_total_ram_mb(meminfo: Path = Path("/proc/meminfo")) -> int:
    for line in meminfo.read_text().splitlines():
        if line.startswith("MemTotal:"):
            # "MemTotal:       16318412 kB"
            return int(line.split()[1]) // 1024
    return 0


def read_free_disk_gb(path: Path = Path("/")) -> int:
    return shutil.disk_usage(path).free // (1024**3)


def confirm(prompt: str) -> bool:
    reply = input(f"{prompt} (y/n): ").strip()
    return reply[:1] in {"y", "Y"}


def check_requirements(
    *,
    os_release: Mapping[str, str],
    ram_mb: int,
    disk_gb: int,
    assume_yes: bool = False,
    confirm_fn: Callable[[str], bool] = confirm,
) -> None:
    logger.info("[install] Checking system requirements...")

    os_id = str(os_release.get("ID") or "").strip().lower()
    if os_id not in SUPPORTED_OS_IDS:
        logger.warning(f"⚠️  [install] This script is tested on Ubuntu/Debian. Current OS: {os_id or 'unknown'}")
        if not assume_yes and not confirm_fn("Continue anyway?"):
            raise SystemExit(1)

    if ram_mb < MIN_RAM_MB:
        logger.warning(f"⚠️  [install] System has {ram_mb}MB RAM, recommended minimum is {MIN_RAM_MB}MB")
    if disk_gb < MIN_DISK_GB:
        logger.warning(f"⚠️  [install] System has {disk_gb}GB available, recommended minimum is {MIN_DISK_GB}GB")


def install_docker(*, sudo_user: str = "") -> None:
    if shutil.which("docker"):
        logger.info("[install] Docker is already installed")
        return

    logger.info("🐳 [install] Installing Docker...")
    run_command(build_docker_install_cmd())
    if sudo_user:
        run_command(build_usermod_docker_cmd(user=sudo_user))


def install_docker_compose() -> None:
    if run_command(build_compose_version_cmd(), check=False, capture=True).returncode == 0:
        logger.info("[install] Docker Compose is already installed")
        return

    logger.info("🐳 [install] Installing Docker Compose...")
    run_command(build_apt_update_cmd())
    run_command(build_apt_install_cmd(packages=["docker-compose-plugin"]))


def configure_firewall() -> None:
    logger.info("🛡️ [install] Configuring firewall...")
    if not shutil.which("ufw"):
        run_command(build_apt_install_cmd(packages=["ufw"]))
    for port in FIREWALL_PORTS:
        run_command(build_ufw_allow_cmd(port=port))
    run_command(build_ufw_enable_cmd())


def setup_platform(*, source_dir: Path, install_dir: Path) -> None:
    logger.info("📁 [install] Setting up platform directory...")
    install_dir.mkdir(parents=True, exist_ok=True)
    if source_dir.resolve() != install_dir.resolve():
        shutil.copytree(source_dir, install_dir, dirs_exist_ok=True, ignore=shutil.ignore_patterns(*BUNDLE_IGNORE))

    for rel in PLATFORM_DIRS:
        (install_dir / rel).mkdir(parents=True, exist_ok=True)

    env_path = install_dir / ".env"
    if not env_path.exists():
        example = install_dir / ".env.example"
        if example.exists():
            shutil.copyfile(example, env_path)
        logger.warning(f"⚠️  [install] Please edit {env_path} with your configuration")

    apps_key = VarsEnum.CARRIER_APPS_DIR.value
    existing = parse_dotenv_file(env_path) if env_path.exists() else {}
    if not existing.get(apps_key):
        write_dotenv_values(path=env_path, updates={apps_key: str(install_dir / "apps")}, create=True)

    for network in PLATFORM_NETWORKS:
        # Already-existing networks are fine.
        run_command(build_network_create_cmd(name=network), check=False, capture=True)


def build_traefik_config(*, acme_email: str) -> dict:
    return {
        "api": {"dashboard": True},
        "entryPoints": {
            "http": {
                "address": ":80",
                "http": {"redirections": {"entryPoint": {"to": "https", "scheme": "https"}}},
            },
            "https": {"address": ":443"},
        },
        "providers": {
            "docker": {
                "endpoint": "unix:///var/run/docker.sock",
                "exposedByDefault": False,
                "network": "web",
            }
        },
        "certificatesResolvers": {
            "cloudflare": {
                "acme": {
                    "email": acme_email,
                    "storage": "/letsencrypt/acme.json",
                    "dnsChallenge": {"provider": "cloudflare", "resolvers": ["1.1.1.1:53", "1.0.0.1:53"]},
                }
            }
        },
        "log": {"level": "INFO"},
        "accessLog": {},
    }


def generate_configs(*, install_dir: Path) -> None:
    logger.info("⚙️ [install] Generating configuration files...")
    env_kv = parse_dotenv_file(install_dir / ".env") if (install_dir / ".env").exists() else {}
    env_kv = apply_defaults(PLATFORM_SCHEMA, env_kv)

    traefik_path = install_dir / "config" / "traefik" / "traefik.yml"
    if not traefik_path.exists():
        config = build_traefik_config(acme_email=str(env_kv.get(VarsEnum.CF_API_EMAIL.value) or ""))
        traefik_path.parent.mkdir(parents=True, exist_ok=True)
        traefik_path.write_text(yaml.safe_dump(config, sort_keys=False))

    hooks_path = install_dir / "config" / "webhook" / "hooks.json"
    if not hooks_path.exists():
        hook = build_deploy_hook(
            hook_id=env_kv[VarsEnum.WEBHOOK_HOOK_ID.value],
            execute_command=env_kv[VarsEnum.WEBHOOK_EXECUTE_COMMAND.value],
            production_ref=env_kv[VarsEnum.CARRIER_DEPLOY_REF.value],
            secret=str(env_kv.get(SecretsEnum.WEBHOOK_SECRET.value) or ""),
        )
        hooks_path.parent.mkdir(parents=True, exist_ok=True)
        hooks_path.write_text(render_hooks_json([hook]))


def expected_platform_services(install_dir: Path) -> list[str]:
    try:
        descriptor = load_compose_descriptor(install_dir)
    except FileNotFoundError:
        return list(DEFAULT_PLATFORM_SERVICES)
    return get_container_names(descriptor) or list(DEFAULT_PLATFORM_SERVICES)


def check_services(*, expected: list[str], running: list[str]) -> dict[str, bool]:
    running_set = {name.strip() for name in running if name.strip()}
    return {service: service in running_set for service in expected}


def start_platform(*, install_dir: Path, wait_seconds: int = 10, sleep_fn: Callable[[float], None] = time.sleep) -> bool:
    logger.info("🚀 [install] Starting platform services...")
    run_command(build_platform_up_cmd(), cwd=install_dir)

    logger.info("⏳ [install] Waiting for services to start...")
    sleep_fn(wait_seconds)

    result = run_command(build_running_containers_cmd(), capture=True)
    status = check_services(expected=expected_platform_services(install_dir), running=result.stdout.splitlines())
    for service, ok in status.items():
        if ok:
            logger.info(f"[install] ✓ {service} is running")
        else:
            logger.error(f"[install] ✗ {service} failed to start")
    return all(status.values())


def show_completion(*, install_dir: Path) -> None:
    env_kv = parse_dotenv_file(install_dir / ".env") if (install_dir / ".env").exists() else {}
    domain = str(env_kv.get(VarsEnum.DOMAIN.value) or "").strip() or "<DOMAIN>"
    apps_dir = str(env_kv.get(VarsEnum.CARRIER_APPS_DIR.value) or install_dir / "apps")

    logger.info("[install] ════════════════════════════════════════")
    logger.info("[install] Installation Complete!")
    logger.info("[install] ════════════════════════════════════════")
    print()
    print("Access your services:")
    print(f"  Portainer: https://portainer.{domain}")
    print(f"  Traefik:   https://traefik.{domain}")
    print(f"  Webhook:   https://webhook.{domain}/hooks/deploy-app")
    print()
    print("Next steps:")
    print(f"1. Edit configuration: nano {install_dir / '.env'}")
    print("2. Set up DNS records pointing to this server")
    print("3. Access Portainer and create admin account")
    print("4. Deploy your first app!")
    print()
    print("Deploy apps by:")
    print("  - Using Portainer's Stack feature")
    print("  - Pushing to GitHub (webhook auto-deploy)")
    print(f"  - Placing docker-compose.yml in {apps_dir}/")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Install the Docker Compose VPS platform")
    parser.add_argument(
        "--install-dir",
        default=None,
        help="Install directory. Resolution: CLI -> CARRIER_PLATFORM_DIR env var -> /opt/carrier",
    )
    parser.add_argument(
        "--source-dir",
        default=None,
        help="Bundle to copy into the install dir (default: the current directory)",
    )
    parser.add_argument("--yes", "-y", action="store_true", help="Do not prompt on unsupported OS")
    parser.add_argument("--skip-firewall", action="store_true", help="Leave ufw untouched")
    parser.add_argument("--skip-start", action="store_true", help="Do not start the platform services")
    parser.add_argument("--wait-seconds", type=int, default=10, help="Seconds to wait before checking services")
    args = parser.parse_args(argv)

    setup_logging()
    print(BANNER)

    resolved_install_dir = str(args.install_dir or "").strip()
    if not resolved_install_dir:
        resolved_install_dir = str(os.getenv(VarsEnum.CARRIER_PLATFORM_DIR.value) or "").strip()
    install_dir = Path(resolved_install_dir) if resolved_install_dir else DEFAULT_INSTALL_DIR

    check_root()
    source_dir = resolve_source_dir(args.source_dir)
    check_requirements(
        os_release=read_os_release(),
        ram_mb=read_total_ram_mb(),
        disk_gb=read_free_disk_gb(),
        assume_yes=bool(args.yes),
    )

    logger.info("[install] Starting installation...")
    install_docker(sudo_user=str(os.getenv(ENV_SUDO_USER) or "").strip())
    install_docker_compose()
    if not args.skip_firewall:
        configure_firewall()
    setup_platform(source_dir=source_dir, install_dir=install_dir)
    generate_configs(install_dir=install_dir)

    healthy = True
    if not args.skip_start:
        healthy = start_platform(install_dir=install_dir, wait_seconds=args.wait_seconds)
    show_completion(install_dir=install_dir)
    return 0 if healthy else 1


if __name__ == "__main__":
    raise SystemExit(main())
