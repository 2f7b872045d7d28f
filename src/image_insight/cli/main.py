from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import replace
from typing import List, Sequence

from ..config import load_settings
from ..domain.models import FIELD_MAPPING_KEYS, AppConfiguration
from ..errors import PreconditionNotMet
from ..images import request_from_path
from ..logging import configure_logging, get_logger
from ..orchestrator import InsightSession, build_session

LOG = get_logger("cli-main")

_CONFIG_FIELDS = {
    "apiKey": "api_key",
    "googleSheetId": "google_sheet_id",
    "sheetName": "sheet_name",
    "webhookUrl": "webhook_url",
}


def _session(ns: argparse.Namespace) -> InsightSession:
    settings = load_settings(os.getcwd())
    if getattr(ns, "model", None):
        settings = replace(settings, gemini_model=ns.model)
    return build_session(settings)


def _print(obj: object) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def _handle_analyze(ns: argparse.Namespace) -> int:
    session = _session(ns)
    try:
        session.set_image(request_from_path(ns.image))
        ok = session.analyze()
        if ok and ns.summarize:
            session.summarize()
        if ok and ns.draft_email:
            session.draft_email()
    except PreconditionNotMet as exc:
        LOG.error(str(exc))
        return 2
    finally:
        session.close()

    snap = session.snapshot()
    _print(
        {
            "result": snap["result"],
            "summary": snap["summary"],
            "emailDraft": snap["emailDraft"],
            "webhook": snap["webhook"],
            "errors": {
                stage: snap[stage]["error"]
                for stage in ("analysis", "summaryStage", "emailStage")
                if snap[stage]["error"]
            },
        }
    )
    return 0 if ok else 1


def _handle_config_show(ns: argparse.Namespace) -> int:
    session = _session(ns)
    try:
        _print({"path": session.config_store.path, "config": session.config.redacted()})
    finally:
        session.close()
    return 0


def _apply_assignments(config: AppConfiguration, assignments: List[str]) -> AppConfiguration:
    mappings = dict(config.field_mappings)
    updated = replace(config)
    for item in assignments:
        if "=" not in item:
            raise PreconditionNotMet(f"Expected KEY=VALUE, got {item!r}")
        key, value = item.split("=", 1)
        key = key.strip()
        if key in _CONFIG_FIELDS:
            updated = replace(updated, **{_CONFIG_FIELDS[key]: value})
        elif key.startswith("fieldMappings."):
            name = key.split(".", 1)[1]
            if name not in FIELD_MAPPING_KEYS:
                raise PreconditionNotMet(f"Unknown field mapping {name!r}")
            mappings[name] = value
        else:
            raise PreconditionNotMet(f"Unknown configuration key {key!r}")
    return replace(updated, field_mappings=mappings)


def _handle_config_set(ns: argparse.Namespace) -> int:
    session = _session(ns)
    try:
        config = _apply_assignments(session.config, ns.assignments)
        session.save_configuration(config)
    except PreconditionNotMet as exc:
        LOG.error(str(exc))
        return 2
    finally:
        session.close()
    _print({"path": session.config_store.path, "config": config.redacted()})
    return 0


def _handle_serve(ns: argparse.Namespace) -> int:
    from ..frontend import create_app
    import uvicorn

    allow_origins = ns.allow_origins
    if allow_origins and len(allow_origins) == 1 and allow_origins[0] == "*":
        allow_origins = ["*"]

    settings = load_settings(os.getcwd())
    app = create_app(
        settings=settings,
        static_dir=ns.static_dir,
        allow_origins=allow_origins,
        serve_static=not ns.api_only,
        poll_interval_sec=ns.poll_interval,
    )
    uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image-insight",
        description="Extract, translate and classify image text with Gemini; forward results to a webhook.",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Analyze a single image and print the result as JSON.")
    analyze.add_argument("--image", required=True, help="Path to the image file")
    analyze.add_argument("--model", help="Override the Gemini model (defaults to env/.env)")
    analyze.add_argument("--summarize", action="store_true", help="Also generate a summary")
    analyze.add_argument("--draft-email", action="store_true", help="Also draft an email")
    analyze.set_defaults(handler=_handle_analyze)

    config = subparsers.add_parser("config", help="Show or update the stored configuration document.")
    config_sub = config.add_subparsers(dest="config_command", required=True)
    show = config_sub.add_parser("show", help="Print the configuration (API key masked)")
    show.set_defaults(handler=_handle_config_show)
    set_cmd = config_sub.add_parser(
        "set",
        help="Update fields, e.g. apiKey=... webhookUrl=... fieldMappings.summary=Resumen",
    )
    set_cmd.add_argument("assignments", nargs="+", metavar="KEY=VALUE")
    set_cmd.set_defaults(handler=_handle_config_set)

    serve = subparsers.add_parser("serve", help="Run the JSON API (and static frontend if built).")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8002)
    serve.add_argument("--log-level", default="info")
    serve.add_argument("--static-dir", help="Override static frontend directory relative to project root")
    serve.add_argument("--api-only", action="store_true", help="Serve JSON API without static frontend")
    serve.add_argument("--poll-interval", type=float, default=2.0, help="Seconds between config store polls")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )
    serve.set_defaults(handler=_handle_serve)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")
    args = build_parser().parse_args(provided)
    if args.verbose or args.quiet:
        configure_logging("DEBUG" if args.verbose else "WARNING")
    code = args.handler(args)
    LOG.info(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
