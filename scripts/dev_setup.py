"""Prepare a local checkout: write .env, create the story table and check the prompts.

Optionally builds one story from a text file so the generation backends can
be smoke-tested end to end before starting the server.
"""
from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values, load_dotenv, set_key

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
SECRET_KEYS = {"SECRET_KEY", "ARK_API_KEY"}
PROMPT_KEYS = (
    "story_opening",
    "next_node",
    "segment_split",
    "perspective_rewrite",
    "text_analysis",
    "illustration",
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--env-path", type=Path, default=DEFAULT_ENV_PATH, help="The .env file to create or update.")
    parser.add_argument("--secret-key", help="Flask SECRET_KEY.")
    parser.add_argument("--ark-api-key", help="API key for the hosted text and image models.")
    parser.add_argument("--ark-base-url", help="Base URL of the OpenAI-compatible endpoint.")
    parser.add_argument("--text-model", help="Model id used for story text (STORY_TEXT_MODEL).")
    parser.add_argument("--image-model", help="Model id used for illustrations (STORY_IMAGE_MODEL).")
    parser.add_argument(
        "--local-model-path",
        help="Hugging Face model directory used for story text instead of the hosted API.",
    )
    parser.add_argument("--database-url", help="SQLAlchemy URL stored as DATABASE_URL.")
    parser.add_argument(
        "--sample-text",
        type=Path,
        help="Build one story from this UTF-8 file to smoke-test the configured backends.",
    )
    return parser.parse_args()


def update_env_file(args: argparse.Namespace) -> Dict[str, Optional[str]]:
    path: Path = args.env_path
    updates = {
        "FLASK_APP": "wsgi.py",
        "SECRET_KEY": args.secret_key,
        "ARK_API_KEY": args.ark_api_key,
        "ARK_BASE_URL": args.ark_base_url,
        "STORY_TEXT_MODEL": args.text_model,
        "STORY_IMAGE_MODEL": args.image_model,
        "TEXT_GENERATOR_MODEL_PATH": args.local_model_path,
        "DATABASE_URL": args.database_url,
    }

    if path.exists():
        backup = path.with_suffix(path.suffix + ".bak")
        shutil.copy(path, backup)
        print(f"Existing {path.name} backed up to {backup.name}.")
    else:
        path.touch()

    for key, value in updates.items():
        if value:
            set_key(str(path), key, value, quote_mode="never")
    print(f"Environment written to {path}.")
    return dotenv_values(path)


def check_prompts() -> int:
    from storyweaver.services.generation import GenerationConfigError, load_prompt_entry

    missing = 0
    for key in PROMPT_KEYS:
        try:
            load_prompt_entry(key)
        except GenerationConfigError as exc:
            missing += 1
            print(f"  prompt '{key}': {exc}")
    if not missing:
        print(f"All {len(PROMPT_KEYS)} prompt templates found.")
    return missing


def build_sample(path: Path) -> None:
    from storyweaver.services.story_builder import build_story
    from storyweaver.services.story_store import StoryStore

    story = build_story(StoryStore(), path.read_text(encoding="utf-8"))
    root = story.nodes[story.root_id]
    print(f"Sample story {story.id}: '{root.title}'")
    print(f"  characters: {', '.join(story.characters) or '-'}")
    print(f"  segments: {len(story.original_segments)}, cover image: {'yes' if root.images else 'no'}")


def main() -> int:
    args = parse_args()
    env_values = update_env_file(args)

    # Settings are read when the package is imported, so import it only now.
    load_dotenv(args.env_path, override=True)
    from storyweaver import create_app

    # create_app also brings the story table up to date.
    app = create_app()
    print(f"Database ready at {app.config['SQLALCHEMY_DATABASE_URI']}.")
    with app.app_context():
        failures = check_prompts()
        if args.sample_text and not failures:
            build_sample(args.sample_text)

    print("\nSummary:")
    for key in sorted(env_values):
        value = env_values[key] or ""
        if key in SECRET_KEYS and value:
            value = value[:4] + "…"
        print(f"  {key}={value}")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
