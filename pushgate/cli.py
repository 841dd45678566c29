import argparse
import json
import sys
from typing import List, Optional, TextIO

import yaml

from pushgate import __version__
from pushgate.config import HookSettings, load_settings
from pushgate.decision.driver import PushDecision, PushRequest, evaluate_push
from pushgate.engine import PolicyEngine
from pushgate.git.history import GitHistory, HistoryError
from pushgate.git.refs import UnrecognizedRefType, classify_ref
from pushgate.logs import configure_logging
from pushgate.policy.parser import PolicySourceError, load_policy_file
from pushgate.reporting.message import (
    AnnotationFormatter,
    command_formatter,
    identity_formatter,
    load_template,
    render_rejection,
)
from pushgate.storage.atomic import atomic_write
from pushgate.storage.cache import CacheError

# Errors that abort a hook run: the push is refused and the cause goes to stderr.
FATAL_ERRORS = (UnrecognizedRefType, PolicySourceError, HistoryError, CacheError, ValueError)


def _add_common_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", help="Path to pushgate.yaml (default: $PUSHGATE_CONFIG or ./pushgate.yaml)")
    p.add_argument("--denylist", dest="denylist_path", help="Denylist source file")
    p.add_argument("--cache", dest="cache_path", help="Lookup cache file")
    p.add_argument("--template", dest="template_path", help="Rejection message template (must contain _ERROR_)")
    p.add_argument("--formatter", dest="annotation_formatter", help="Command used to prettify annotations")
    p.add_argument("--log-level", dest="log_level", help="Log level (default WARNING)")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="pushgate", description="Denylist gate for git pushes.")
    _add_common_options(p)
    sub = p.add_subparsers(dest="cmd", required=True)

    update_p = sub.add_parser("update", help="Run as the git update hook for one ref.")
    update_p.add_argument("ref", help="Full ref path, e.g. refs/heads/main")
    update_p.add_argument("old", help="Old commit id (all zeros for a new ref)")
    update_p.add_argument("new", help="New commit id (all zeros for a deletion)")

    sub.add_parser("pre-receive", help="Run as the git pre-receive hook (reads 'old new ref' lines on stdin).")

    sub.add_parser("lint", help="Report denylist lines that would be skipped.")

    sub.add_parser("rebuild-cache", help="Rebuild the lookup cache even if it is fresh.")

    dump_p = sub.add_parser("dump", help="Print the rules currently in the lookup cache.")
    dump_p.add_argument("--format", default="text", choices=["text", "json", "yaml"])
    dump_p.add_argument("--output", help="Write to file instead of stdout")

    check_p = sub.add_parser("check", help="Ask whether a ref (and optionally a commit) is blocked.")
    check_p.add_argument("ref", help="Ref name (main) or path (refs/heads/main)")
    check_p.add_argument("commit", nargs="?", help="Commit id")

    sub.add_parser("version", help="Print version.")
    return p


def build_update_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="pushgate-update",
        description="git update hook: refuse pushes that touch denylisted refs or commits.",
    )
    p.add_argument("ref", help="Full ref path, e.g. refs/heads/main")
    p.add_argument("old", help="Old commit id")
    p.add_argument("new", help="New commit id")
    return p


def _settings_from_args(args: argparse.Namespace) -> HookSettings:
    overrides = {
        key: getattr(args, key, None)
        for key in ("denylist_path", "cache_path", "template_path", "annotation_formatter", "log_level")
    }
    return load_settings(getattr(args, "config", None), overrides)


def _formatter(settings: HookSettings) -> AnnotationFormatter:
    if settings.annotation_formatter:
        return command_formatter(settings.annotation_formatter, timeout=settings.formatter_timeout)
    return identity_formatter


def _engine(settings: HookSettings) -> PolicyEngine:
    return PolicyEngine(settings.denylist_path, settings.cache_path)


def _history(settings: HookSettings) -> GitHistory:
    return GitHistory(git_dir=settings.git_dir, git_binary=settings.git_binary)


def _fail(message: object) -> int:
    print(f"pushgate: error: {message}", file=sys.stderr)
    return 1


def _report_rejection(decision: PushDecision, settings: HookSettings, stream: TextIO) -> None:
    message = render_rejection(
        decision,
        template=load_template(settings.template_path),
        formatter=_formatter(settings),
    )
    stream.write(message if message.endswith("\n") else message + "\n")


def run_update(settings: HookSettings, ref: str, old: str, new: str, *, history=None) -> int:
    request = PushRequest(ref_path=ref, old_sha=old, new_sha=new)
    with _engine(settings) as engine:
        try:
            decision = evaluate_push(engine, request, history or _history(settings))
        except FATAL_ERRORS as e:
            return _fail(e)
    if decision.accepted:
        return 0
    _report_rejection(decision, settings, sys.stderr)
    return 1


def run_pre_receive(settings: HookSettings, lines: List[str], *, history=None) -> int:
    """
    pre-receive gets every ref of the push at once; one rejected ref refuses
    the whole push.
    """
    history = history or _history(settings)
    with _engine(settings) as engine:
        for raw in lines:
            if not raw.strip():
                continue
            parts = raw.split()
            if len(parts) != 3:
                return _fail(f"malformed pre-receive line: {raw.strip()!r}")
            old, new, ref = parts
            try:
                decision = evaluate_push(engine, PushRequest(ref_path=ref, old_sha=old, new_sha=new), history)
            except FATAL_ERRORS as e:
                return _fail(e)
            if not decision.accepted:
                _report_rejection(decision, settings, sys.stderr)
                return 1
    return 0


def _cmd_lint(settings: HookSettings) -> int:
    try:
        result = load_policy_file(settings.denylist_path)
    except PolicySourceError as e:
        return _fail(e)
    for warning in result.warnings:
        print(f"{settings.denylist_path}:{warning.line_number}: {warning.code}: {warning.message}")
    print(f"{len(result.policy)} rules, {len(result.warnings)} lines skipped")
    return 0 if result.ok else 1


def _cmd_rebuild(settings: HookSettings) -> int:
    with _engine(settings) as engine:
        try:
            policy = engine.rebuild()
        except FATAL_ERRORS as e:
            return _fail(e)
    print(f"rebuilt {settings.cache_path} ({len(policy)} rules)")
    return 0


def _cmd_dump(settings: HookSettings, fmt: str, output: Optional[str]) -> int:
    with _engine(settings) as engine:
        try:
            engine.ensure_fresh()
            policy = engine.policy()
        except FATAL_ERRORS as e:
            return _fail(e)

    entries = list(policy.entries())
    if fmt == "json":
        text = json.dumps([e.model_dump(mode="json", exclude_none=True) for e in entries], indent=2) + "\n"
    elif fmt == "yaml":
        text = yaml.safe_dump([e.model_dump(mode="json", exclude_none=True) for e in entries], sort_keys=False)
    else:
        text = "".join(e.to_line() + "\n" for e in entries)

    if output:
        try:
            with atomic_write(output, "w") as f:
                f.write(text)
        except OSError as e:
            return _fail(f"writing {output}: {e}")
        return 0
    sys.stdout.write(text)
    return 0


def _cmd_check(settings: HookSettings, ref: str, commit: Optional[str]) -> int:
    ref_name = ref
    if ref.startswith("refs/"):
        try:
            _, ref_name = classify_ref(ref)
        except UnrecognizedRefType as e:
            return _fail(e)
    with _engine(settings) as engine:
        try:
            match = engine.check(ref_name, commit)
        except FATAL_ERRORS as e:
            return _fail(e)
    if not match.blocked:
        print("not blocked")
        return 0
    detail = match.reason.value if match.reason else "BLOCKED"
    if match.annotation:
        detail = f"{detail}: {match.annotation}"
    print(f"blocked ({detail})")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    p = build_parser()
    args = p.parse_args(sys.argv[1:] if argv is None else argv)

    if args.cmd == "version":
        print(f"pushgate {__version__}")
        return 0

    try:
        settings = _settings_from_args(args)
    except ValueError as e:
        return _fail(e)
    configure_logging(settings.log_level, settings.log_format)

    if args.cmd == "update":
        return run_update(settings, args.ref, args.old, args.new)
    if args.cmd == "pre-receive":
        return run_pre_receive(settings, sys.stdin.read().splitlines())
    if args.cmd == "lint":
        return _cmd_lint(settings)
    if args.cmd == "rebuild-cache":
        return _cmd_rebuild(settings)
    if args.cmd == "dump":
        return _cmd_dump(settings, args.format, args.output)
    if args.cmd == "check":
        return _cmd_check(settings, args.ref, args.commit)
    return 2


def update_main(argv: Optional[List[str]] = None) -> int:
    """Entry point for installing pushgate directly as hooks/update."""
    args = build_update_parser().parse_args(sys.argv[1:] if argv is None else argv)
    try:
        settings = load_settings()
    except ValueError as e:
        return _fail(e)
    configure_logging(settings.log_level, settings.log_format)
    return run_update(settings, args.ref, args.old, args.new)


if __name__ == "__main__":
    sys.exit(main())
