#!/usr/bin/env python3
"""
replay-sandbox - Main Entry Point

Usage:
    replay-sandbox serve [--host H] [--port P]     # Serve the HTTP API
    replay-sandbox run script.py                   # Run a script interactively in the terminal
    replay-sandbox grade script.py cases.json      # Grade a script against test cases
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from .api import create_app
from .config import Config
from .engine import ExecutionEngine
from .errors import SandboxError
from .execution.grading import summarize
from .models import BatchOptions, TestCase


def _load_config(env_file: Path) -> Config:
    env_loaded = load_dotenv(env_file)
    if env_loaded:
        print(f"✅ Loaded configuration from {env_file}")
    else:
        print("⚠️  No .env file found, using defaults")
    cfg = Config.from_env(env_file_path=env_file if env_file.exists() else None)
    print(f"✅ Configuration loaded: fallback={cfg.fallback.value}, sessions in {cfg.sessions_root}")
    return cfg


def _serve(cfg: Config, args) -> int:
    engine = ExecutionEngine(cfg)
    print(f"🚀 Serving replay-sandbox API on http://{args.host}:{args.port}")
    uvicorn.run(create_app(engine), host=args.host, port=args.port, log_level="info")
    return 0


def _run(cfg: Config, args) -> int:
    """Terminal front end: every prompt is answered from stdin and the program replayed."""
    engine = ExecutionEngine(cfg)
    code = Path(args.script).read_text(encoding="utf-8")
    inputs = []
    shown = ""
    try:
        result = engine.submit_run(code, [])
        while True:
            # Attempts are deterministic, so only the new tail needs printing
            out = result.stdout[len(shown):] if result.stdout.startswith(shown) else result.stdout
            sys.stdout.write(out)
            sys.stdout.flush()
            shown = result.stdout
            if not result.awaiting_input:
                break
            try:
                value = input()
            except EOFError:
                print("\n⚠️  Input closed, abandoning run")
                return 1
            # The replay echoes the value itself
            shown += value + "\n"
            result = engine.submit_run(code, inputs, value)
            inputs.append(value)
    finally:
        engine.close()

    if result.error:
        print(result.error, file=sys.stderr)
    return 0 if result.ok else 1


def _grade(cfg: Config, args) -> int:
    engine = ExecutionEngine(cfg)
    code = Path(args.script).read_text(encoding="utf-8")
    raw = json.loads(Path(args.cases).read_text(encoding="utf-8"))
    cases = [TestCase(**c) for c in raw]
    options = BatchOptions(echo_input=args.echo, checker=args.checker)
    try:
        summary = summarize(engine.run_batch(code, cases, options))
    finally:
        engine.close()

    for i, r in enumerate(summary.results, start=1):
        mark = "✅" if r.passed else "❌"
        detail = f" - {r.error}" if r.error else ""
        print(f"{mark} case {i}: {r.status.value} ({r.time_ms} ms){detail}")
    print(f"🎯 {summary.passed}/{summary.total} passed")
    return 0 if summary.passed == summary.total else 1


def main(argv=None) -> int:
    """Main entry point for replay-sandbox."""
    parser = argparse.ArgumentParser(description="replay-sandbox - replay-based execution of student programs")
    parser.add_argument("--env-file", default="sandbox.env", help="env file with configuration overrides")
    parser.add_argument("-v", "--verbose", action="store_true", help="log engine events")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="serve the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    run = sub.add_parser("run", help="run a script interactively")
    run.add_argument("script")

    grade = sub.add_parser("grade", help="grade a script against a JSON list of test cases")
    grade.add_argument("script")
    grade.add_argument("cases")
    grade.add_argument("--echo", action="store_true", help="echo consumed input into stdout")
    grade.add_argument("--checker", default="exact_match")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        cfg = _load_config(Path(args.env_file))
    except ValueError as e:
        print(f"❌ Invalid configuration: {e}")
        return 2

    handlers = {"serve": _serve, "run": _run, "grade": _grade}
    try:
        return handlers[args.command](cfg, args)
    except SandboxError as e:
        print(f"❌ {type(e).__name__}: {e}")
        return 1
    except KeyboardInterrupt:
        print("\n👋 Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
