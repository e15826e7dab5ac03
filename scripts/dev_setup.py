"""Write provider credentials for local development into ``.env``.

Existing lines, comments included, are kept in place; only the variables passed
on the command line are replaced or appended. ``--check`` reports which
providers the resulting file configures without printing any secret.
"""
from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.append(str(PROJECT_ROOT))

from studio.config import ProviderSettings  # noqa: E402

ENV_FILE = PROJECT_ROOT / ".env"

# argparse destination -> environment variable
PROVIDER_OPTIONS = {
    "chat_key": "AZURE_OPENAI_KEY",
    "chat_endpoint": "AZURE_OPENAI_ENDPOINT",
    "chat_deployment": "AZURE_OPENAI_DEPLOYMENT",
    "rewrite_key": "AZURE_OPENAI_O1_KEY",
    "rewrite_endpoint": "AZURE_OPENAI_O1_ENDPOINT",
    "rewrite_deployment": "AZURE_OPENAI_O1_DEPLOYMENT",
    "image_key": "AZURE_OPENAI_API_KEY",
    "image_endpoint": "AZURE_OPENAI_IMAGE_ENDPOINT",
    "image_deployment": "DALL_E_DEPLOYMENT",
    "image_api_version": "OPENAI_API_VERSION",
    "gcp_project": "GOOGLE_CLOUD_PROJECT_ID",
    "gcp_location": "GOOGLE_CLOUD_LOCATION",
    "gcp_service_account_key": "GOOGLE_CLOUD_SERVICE_ACCOUNT_KEY",
    "media_root": "MEDIA_ROOT",
    "secret_key": "SECRET_KEY",
    "log_level": "LOG_LEVEL",
}


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Store Azure OpenAI and Vertex AI settings in a local .env file.")
    parser.add_argument("--env-path", type=Path, default=ENV_FILE, help="File to update (default: .env in the project).")
    parser.add_argument("--check", action="store_true", help="Only report which providers are configured.")
    group = parser.add_argument_group("settings")
    for dest, variable in PROVIDER_OPTIONS.items():
        group.add_argument("--" + dest.replace("_", "-"), dest=dest, metavar="VALUE", help=f"sets {variable}")
    return parser.parse_args(argv)


def _parse_line(line: str) -> Optional[tuple]:
    stripped = line.strip()
    if stripped.startswith("export "):
        stripped = stripped[len("export "):].lstrip()
    if not stripped or stripped.startswith("#") or "=" not in stripped:
        return None
    key, _, value = stripped.partition("=")
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    return key.strip(), value


def read_env(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    values: Dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        parsed = _parse_line(line)
        if parsed:
            values[parsed[0]] = parsed[1]
    return values


def merge_env_lines(lines: List[str], updates: Dict[str, str]) -> List[str]:
    """Replace assignments for ``updates`` in place and append the rest."""

    pending = dict(updates)
    merged: List[str] = []
    for line in lines:
        parsed = _parse_line(line)
        if parsed and parsed[0] in pending:
            merged.append(f"{parsed[0]}={pending.pop(parsed[0])}")
        else:
            merged.append(line)
    merged.extend(f"{key}={value}" for key, value in pending.items())
    return merged


def collect_updates(args: argparse.Namespace) -> Dict[str, str]:
    updates: Dict[str, str] = {}
    for dest, variable in PROVIDER_OPTIONS.items():
        value = (getattr(args, dest, None) or "").strip()
        if value:
            updates[variable] = value
    return updates


def update_env_file(path: Path, updates: Dict[str, str]) -> Dict[str, str]:
    if not updates and path.exists():
        return read_env(path)
    existing = path.read_text(encoding="utf-8").splitlines() if path.exists() else []
    if existing:
        backup = path.with_name(path.name + ".bak")
        shutil.copy(path, backup)
        print(f"Previous settings saved to {backup.name}.")
    path.write_text("\n".join(merge_env_lines(existing, updates)) + "\n", encoding="utf-8")
    print(f"Wrote {len(updates)} setting(s) to {path}.")
    return read_env(path)


def provider_report(values: Dict[str, str]) -> Dict[str, bool]:
    providers = ProviderSettings.from_env(values)
    return {
        "chat": providers.chat.configured,
        "rewrite": providers.rewrite.configured,
        "image": providers.image.configured,
        "video": providers.video.configured,
    }


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    if args.check:
        values = read_env(args.env_path)
    else:
        values = update_env_file(args.env_path, collect_updates(args))

    report = provider_report(values)
    for name, ready in report.items():
        print(f"  {name:<8} {'configured' if ready else 'missing'}")
    return 1 if args.check and not all(report.values()) else 0


if __name__ == "__main__":
    sys.exit(main())
