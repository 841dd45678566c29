from __future__ import annotations

import logging
import re
import shlex
import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Union

from pushgate.decision.driver import PushDecision
from pushgate.policy.matcher import MatchReason

logger = logging.getLogger(__name__)

ERROR_TOKEN = "_ERROR_"

DEFAULT_TEMPLATE = (
    "*** Push rejected by pushgate ***\n"
    "*** " + ERROR_TOKEN + "\n"
    "*** Ask a repository administrator if you think this is a mistake.\n"
)

AnnotationFormatter = Callable[[str], str]

# Shell metacharacters never reach a formatter command.
_UNSAFE_ANNOTATION_CHARS = re.compile(r"[<>&;|$*?!`]")


def sanitize_annotation(text: str) -> str:
    return _UNSAFE_ANNOTATION_CHARS.sub("", str(text or "")).strip()


class FormatterError(RuntimeError):
    """Raised when the annotation formatter command cannot produce output."""


def identity_formatter(text: str) -> str:
    return text


def _run_formatter(argv: List[str], text: str, timeout: Optional[float]) -> str:
    try:
        proc = subprocess.run(
            [*argv, text],
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise FormatterError(f"annotation formatter {argv[0]!r} not found") from exc
    except subprocess.TimeoutExpired as exc:
        raise FormatterError(f"annotation formatter {argv[0]!r} timed out") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise FormatterError(f"annotation formatter {argv[0]!r} failed (rc={exc.returncode}): {stderr}") from exc
    except OSError as exc:
        raise FormatterError(f"annotation formatter {argv[0]!r} could not run: {exc}") from exc
    return (proc.stdout or "").rstrip("\n")


def command_formatter(command: str, *, timeout: Optional[float] = 5.0) -> AnnotationFormatter:
    """
    Formatter backed by an external command, called as `<command> <annotation>`.

    Best effort: a missing command, a non-zero exit, a timeout or empty
    output all fall back to the unformatted annotation.
    """
    argv = shlex.split(command)

    def _format(text: str) -> str:
        if not argv:
            return text
        try:
            formatted = _run_formatter(argv, text, timeout)
        except FormatterError as exc:
            logger.warning("%s; using raw annotation", exc)
            return text
        return formatted if formatted.strip() else text

    return _format


def load_template(path: Optional[Union[str, Path]]) -> str:
    if not path:
        return DEFAULT_TEMPLATE
    try:
        with open(path, "r", encoding="utf-8") as f:
            template = f.read()
    except FileNotFoundError:
        logger.debug("message template %s not found; using default", path)
        return DEFAULT_TEMPLATE
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("message template %s unreadable (%s); using default", path, exc)
        return DEFAULT_TEMPLATE
    if not template.strip():
        return DEFAULT_TEMPLATE
    return template


def describe_decision(decision: PushDecision) -> str:
    match = decision.match
    if match is None or not match.blocked:
        return f"{decision.ref_type.value} {decision.ref_name} is not blocked"
    if match.reason == MatchReason.REF_BLOCKED:
        return f"{decision.ref_type.value} {decision.ref_name} is blacklisted"
    if match.reason == MatchReason.COMMIT_BLOCKED:
        return f"commit {match.commit_prefix} is blacklisted"
    return f"commit {match.commit_prefix} is blacklisted on {decision.ref_type.value} {decision.ref_name}"


def render_rejection(
    decision: PushDecision,
    *,
    template: Optional[str] = None,
    formatter: Optional[AnnotationFormatter] = None,
) -> str:
    """
    Fill the rejection template for a rejected push.

    The annotation is sanitized before any formatter sees it, whichever
    formatter is injected.
    """
    reason = describe_decision(decision)
    annotation = decision.match.annotation if decision.match else None
    if annotation:
        cleaned = sanitize_annotation(annotation)
        if cleaned:
            pretty = (formatter or identity_formatter)(cleaned)
            reason = f"{reason}: {pretty}"
    body = template if template and template.strip() else DEFAULT_TEMPLATE
    return body.replace(ERROR_TOKEN, reason)
