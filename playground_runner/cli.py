"""CLI entrypoint for the playground runner."""

from __future__ import annotations

import argparse
import json
import os
from pathlib import Path
import sys

from .config import Settings, load_settings
from .engine import ExecutionEngine
from .errors import RequestValidationError
from .logs import configure_logging
from .models import parse_request
from .templates import DirectoryTemplateLoader
from .trace import parse_transaction_logs


def _settings(args: argparse.Namespace) -> Settings:
    settings = load_settings(path=args.config)
    configure_logging(settings.log_level, settings.log_format)
    return settings


def _templates_dir(args: argparse.Namespace, settings: Settings) -> Path:
    return Path(args.templates) if getattr(args, "templates", None) else settings.templates_dir


def _cmd_serve(args: argparse.Namespace) -> int:
    from .server import create_app

    settings = _settings(args)
    engine = ExecutionEngine(DirectoryTemplateLoader(_templates_dir(args, settings)), settings=settings)
    app = create_app(engine)
    try:
        app.run(host=args.host or settings.host, port=args.port or settings.port, threaded=True)
    finally:
        engine.close()
    return 0


def _cmd_execute(args: argparse.Namespace) -> int:
    settings = _settings(args)
    if args.request == "-":
        raw = sys.stdin.read()
    else:
        raw = Path(args.request).read_text()
    try:
        body = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Request is not valid JSON: {exc}") from exc
    try:
        request = parse_request(body)
    except RequestValidationError as exc:
        for problem in exc.problems:
            print(f"ERROR: {problem}")
        return 1

    engine = ExecutionEngine(DirectoryTemplateLoader(_templates_dir(args, settings)), settings=settings)
    try:
        result = engine.execute_with_timeout(request)
    finally:
        engine.close()
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


def _cmd_templates(args: argparse.Namespace) -> int:
    settings = _settings(args)
    loader = DirectoryTemplateLoader(_templates_dir(args, settings))
    ids = loader.list_templates()
    if not ids:
        print(f"No templates found in {loader.root}")
        return 1
    for template_id in ids:
        mode = "live" if template_id in settings.supported_templates else "precomputed"
        print(f"{template_id}\t{mode}")
    return 0


def _cmd_trace(args: argparse.Namespace) -> int:
    if args.logs == "-":
        lines = sys.stdin.read().splitlines()
    else:
        lines = Path(args.logs).read_text().splitlines()
    trace = parse_transaction_logs(lines)
    print(json.dumps([entry.to_dict() for entry in trace], indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog=os.path.basename(sys.argv[0]))
    parser.add_argument("--config", default=None, help="Path to a runner TOML config ([runner] table)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_serve = sub.add_parser("serve", help="Run the HTTP execution service")
    p_serve.add_argument("--host", default=None, help="Listen address (default: HOST or 0.0.0.0)")
    p_serve.add_argument("--port", type=int, default=None, help="Listen port (default: PORT or 3002)")
    p_serve.add_argument("--templates", default=None, help="Templates directory")
    p_serve.set_defaults(func=_cmd_serve)

    p_execute = sub.add_parser("execute", help="Run one execution request and print the result")
    p_execute.add_argument("request", help="Path to a request JSON file, or - for stdin")
    p_execute.add_argument("--templates", default=None, help="Templates directory")
    p_execute.set_defaults(func=_cmd_execute)

    p_templates = sub.add_parser("templates", help="List templates and whether they run live")
    p_templates.add_argument("--templates", default=None, help="Templates directory")
    p_templates.set_defaults(func=_cmd_templates)

    p_trace = sub.add_parser("trace", help="Parse program logs into a call trace")
    p_trace.add_argument("logs", help="Path to a log file (one line per entry), or - for stdin")
    p_trace.set_defaults(func=_cmd_trace)

    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except FileNotFoundError as exc:
        print(str(exc))
        return 1
    except ValueError as exc:
        print(str(exc))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
