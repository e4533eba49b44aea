# jojo/list_models.py
"""List the provider's models, or probe the configured candidates.

    jojo-list-models                 # models whose id contains "flash" or "pro"
    jojo-list-models --match 2.0     # custom filter
    jojo-list-models --probe         # one tiny request per CHAT_MODELS entry
"""
import argparse
import sys
from typing import List, Optional

from openai import OpenAI, OpenAIError

from .config import Settings
from .errors import ConfigError
from .fallback import classify_failure


def list_models(client: OpenAI, patterns: List[str]) -> List[str]:
    ids = [m.id for m in client.models.list()]
    if patterns:
        ids = [i for i in ids if any(p in i for p in patterns)]
    return sorted(ids)


def probe(client: OpenAI, model: str) -> Optional[str]:
    """Return None if `model` answers, otherwise the error text."""
    try:
        client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": "Test"}],
            max_tokens=5,
        )
    except OpenAIError as exc:
        return f"{classify_failure(exc)}: {exc}"
    return None


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--match", action="append", default=None, help="substring filter (repeatable)")
    parser.add_argument("--probe", action="store_true", help="send a test request to each configured model")
    args = parser.parse_args(argv)

    try:
        settings = Settings()
    except ConfigError as exc:
        print(exc.message, file=sys.stderr)
        return 2
    if not settings.provider_api_key:
        print("No provider key configured (GEMINI_API_KEY / GOOGLE_GENERATIVE_AI_API_KEY).", file=sys.stderr)
        return 2
    client = OpenAI(api_key=settings.provider_api_key, base_url=settings.provider_base_url)

    if args.probe:
        failed = 0
        for model in settings.chat_models:
            error = probe(client, model)
            if error is None:
                print(f"ok     {model}")
            else:
                failed += 1
                print(f"failed {model}: {error[:120]}")
        return 1 if failed == len(settings.chat_models) else 0

    patterns = args.match if args.match is not None else ["flash", "pro"]
    try:
        models = list_models(client, patterns)
    except OpenAIError as exc:
        print(f"Could not list models: {exc}", file=sys.stderr)
        return 1
    if not models:
        print("No matching models found.")
    for model_id in models:
        print(model_id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
