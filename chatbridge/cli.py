"""chatbridge CLI.

Usage:
    chatbridge serve --port 3000
    chatbridge health --url http://127.0.0.1:3000
    chatbridge chat "hello" --model Creative
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys

import httpx
import uvicorn

from .core.config import get_config


def _auth_headers() -> dict[str, str]:
    api_key = os.environ.get("CHATBRIDGE_API_KEY", "").strip()
    return {"Authorization": f"Bearer {api_key}"} if api_key else {}


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the gateway under uvicorn."""
    from .api import configure_web_app, web_app

    configure_web_app(get_config())
    uvicorn.run(web_app, host=args.host, port=args.port)
    return 0


def cmd_health(args: argparse.Namespace) -> int:
    """Probe a running gateway."""
    try:
        resp = httpx.get(f"{args.url.rstrip('/')}/health", timeout=args.timeout)
    except httpx.HTTPError as exc:
        print(f"Gateway unreachable: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(resp.json(), indent=2))
    return 0 if resp.status_code == 200 else 1


def cmd_chat(args: argparse.Namespace) -> int:
    """Send one prompt and print the streamed reply as it arrives."""
    body = {
        "model": args.model,
        "messages": [{"role": "user", "content": args.prompt}],
        "stream": True,
    }
    url = f"{args.url.rstrip('/')}/v1/chat/completions"
    with httpx.stream("POST", url, json=body, headers=_auth_headers(), timeout=None) as resp:
        if resp.status_code != 200:
            resp.read()
            print(f"Request failed ({resp.status_code}): {resp.text}", file=sys.stderr)
            return 1
        for line in resp.iter_lines():
            if not line.startswith("data: "):
                continue
            payload = line[len("data: "):]
            if payload == "[DONE]":
                break
            delta = json.loads(payload)["choices"][0].get("delta") or {}
            print(delta.get("content", ""), end="", flush=True)
    print()
    return 0


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="chatbridge",
        description="OpenAI-compatible gateway for conversational backends",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the gateway")
    serve_parser.add_argument("--host", default=os.environ.get("CHATBRIDGE_API_HOST", "0.0.0.0"))
    serve_parser.add_argument(
        "--port", type=int, default=int(os.environ.get("CHATBRIDGE_API_PORT", "3000")),
    )
    serve_parser.set_defaults(func=cmd_serve)

    # health command
    health_parser = subparsers.add_parser("health", help="Check gateway health")
    health_parser.add_argument("--url", default="http://127.0.0.1:3000")
    health_parser.add_argument("--timeout", type=float, default=5.0)
    health_parser.set_defaults(func=cmd_health)

    # chat command
    chat_parser = subparsers.add_parser("chat", help="Send one prompt and stream the reply")
    chat_parser.add_argument("prompt", help="Prompt text")
    chat_parser.add_argument("--model", default="Creative", help="Model hint / style")
    chat_parser.add_argument("--url", default="http://127.0.0.1:3000")
    chat_parser.set_defaults(func=cmd_chat)

    args = parser.parse_args()
    logging.basicConfig(
        level=get_config().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
