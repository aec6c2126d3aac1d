"""Utility script to configure development environment variables and initialize the database."""
from __future__ import annotations

import argparse
import secrets
import shutil
import sys
from pathlib import Path
from typing import Dict, Optional

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
BACKUP_SUFFIX = ".bak"


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Create or update a .env file with the settings Inkwell needs for local development "
            "and initialize the SQLite database."
        )
    )
    parser.add_argument(
        "--flask-app",
        default="inkwell:create_app",
        help="Entry point used by Flask (default: inkwell:create_app)",
    )
    parser.add_argument(
        "--secret-key",
        required=False,
        help=(
            "Secret key for Flask sessions. If omitted, the current value in .env is kept or a "
            "random key is generated."
        ),
    )
    parser.add_argument("--openai-api-key", help="API key for the chat-completions endpoint.")
    parser.add_argument(
        "--openai-base-url",
        help="Base URL of an OpenAI-compatible API (default: the OpenAI API).",
    )
    parser.add_argument("--model", help="Model name sent with each generation request.")
    parser.add_argument(
        "--database-url",
        help="Override SQLALCHEMY_DATABASE_URI / DATABASE_URL (optional).",
    )
    parser.add_argument(
        "--env-path",
        type=Path,
        default=DEFAULT_ENV_PATH,
        help="Path to the .env file that should be created/updated.",
    )
    parser.add_argument(
        "--skip-db",
        action="store_true",
        help="Only update the .env file without touching the database.",
    )
    return parser.parse_args(argv)


def read_env(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    data: Dict[str, str] = {}
    for line in path.read_text().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, _, value = stripped.partition("=")
        data[key.strip()] = value.strip()
    return data


def write_env(path: Path, values: Dict[str, str]) -> None:
    if path.exists():
        backup_path = path.with_suffix(path.suffix + BACKUP_SUFFIX)
        shutil.copy(path, backup_path)
        print(f"Existing {path.name} backed up to {backup_path.name}.")
    lines = [f"{key}={value}" for key, value in values.items()]
    path.write_text("\n".join(lines) + "\n")
    print(f"Updated environment variables written to {path}.")


def update_env_file(args: argparse.Namespace) -> Dict[str, str]:
    env_data = read_env(args.env_path)
    env_updates = {"FLASK_APP": args.flask_app}
    if args.secret_key:
        env_updates["SECRET_KEY"] = args.secret_key
    elif "SECRET_KEY" not in env_data:
        env_updates["SECRET_KEY"] = secrets.token_hex(32)
    if args.openai_api_key:
        env_updates["OPENAI_API_KEY"] = args.openai_api_key
    if args.openai_base_url:
        env_updates["OPENAI_API_BASE_URL"] = args.openai_base_url
    if args.model:
        env_updates["AI_MODEL"] = args.model
    if args.database_url:
        env_updates["DATABASE_URL"] = args.database_url

    env_data.update(env_updates)
    write_env(args.env_path, env_data)
    return env_data


def initialize_database() -> None:
    from inkwell import create_app, db

    app = create_app()
    with app.app_context():
        db.create_all()
        uri = app.config["SQLALCHEMY_DATABASE_URI"]
    print(f"Database initialized ({uri}).")


def _masked(key: str, value: str) -> str:
    if key in {"SECRET_KEY", "OPENAI_API_KEY"} and value:
        return value[:4] + "…"
    return value


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    env_values = update_env_file(args)

    if not args.skip_db:
        initialize_database()
    else:
        print("Database initialization skipped.")

    print("\nSetup complete! Summary:")
    for key in sorted(env_values):
        print(f"  {key}={_masked(key, env_values[key])}")


if __name__ == "__main__":
    main()
