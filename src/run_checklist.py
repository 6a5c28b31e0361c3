#!/usr/bin/env python3

import argparse
import asyncio
import sys
import traceback

from checklist_reporter import Reporter
from harness_config import SCENARIO_DEFAULTS, HarnessConfig, load_env_file
from harness_errors import ConfigError
from runner import run_harness, summarize


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Resilient UI checklist runner")
    parser.add_argument("--base-url", required=True, help="Base URL under test")
    parser.add_argument("--login-path", help="Login page path or URL (default /login)")
    parser.add_argument("--login-wait", type=float, help="Seconds to wait for login to complete (default 600)")
    parser.add_argument("--headful", action="store_true", help="Show the browser window")
    parser.add_argument("--interactive", action="store_true",
                        help="A person may log in in the browser window; implies --headful")
    parser.add_argument("--checklist", action="store_true",
                        help="stdout carries only key<TAB>OK|NG lines; diagnostics go to stderr")
    parser.add_argument("--verbose", action="store_true", help="Print resolution and gesture details")
    parser.add_argument("--session-file", help="Where the login session is persisted")
    parser.add_argument("--runs-dir", help="Directory for per-run artifacts")
    parser.add_argument("--overrides-file", help="JSON file of extra candidate queries per slug")
    parser.add_argument("--env-file", help="Load credentials from this .env file (default ./.env)")
    parser.add_argument("--fixture-prefix", help="Name prefix for throwaway fixtures")
    parser.add_argument("--detail-url-pattern", help="Regex the detail screen URL must match")
    parser.add_argument("--locale-pattern", help="Regex of characters the locale check flags")
    for name in SCENARIO_DEFAULTS:
        opt = name.replace("_", "-")
        parser.add_argument(f"--{opt}", dest=name, action=argparse.BooleanOptionalAction, default=None,
                            help=f"Run the {name} scenario")
        parser.add_argument(f"--{opt}-strict", dest=f"{name}_strict", action=argparse.BooleanOptionalAction,
                            default=None, help=f"Failures in {name} fail the run")
    return parser


def flags_from_args(args: argparse.Namespace) -> dict:
    """Flatten parsed argv into the flag map the core consumes."""
    flags = {
        "base_url": args.base_url,
        "login_path": args.login_path,
        "login_wait": args.login_wait,
        "headless": not (args.headful or args.interactive),
        "interactive": args.interactive,
        "checklist": args.checklist,
        "verbose": args.verbose,
        "session_file": args.session_file,
        "runs_dir": args.runs_dir,
        "overrides_file": args.overrides_file,
        "fixture_prefix": args.fixture_prefix,
        "detail_url_pattern": args.detail_url_pattern,
        "locale_pattern": args.locale_pattern,
    }
    for name in SCENARIO_DEFAULTS:
        flags[name] = getattr(args, name)
        flags[f"{name}_strict"] = getattr(args, f"{name}_strict")
    return flags


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    # Installed before anything else can print
    reporter = Reporter(checklist=args.checklist, verbose=args.verbose)
    with reporter.channel_guard():
        load_env_file(args.env_file)
        try:
            config = HarnessConfig.from_flags(flags_from_args(args))
        except ConfigError as e:
            reporter.diag(f"✖ {e}")
            return 2
        try:
            run = asyncio.run(run_harness(config, reporter))
        except Exception as e:
            reporter.diag(f"✖ Harness failed: {e}")
            reporter.diag(traceback.format_exc())
            return 1
        if run.ok:
            reporter.diag(f"✅ Done. {summarize(run)}")
        else:
            reporter.diag(f"✖ Run failed. {summarize(run)}")
        return 0 if run.ok else 1


if __name__ == "__main__":
    sys.exit(main())
