"""Command allowlist engine.

A shell string is allowed only when every program it would run is on the
allowlist. Program names are pulled out of pipelines, ``&&``/``||``/``;``
chains, backtick and ``$(...)`` substitutions (nested to any depth).

Extraction errs on the side of reporting too many names: anything that might
be a command is reported, so an unknown token makes the string fail the
allowlist rather than slip past it. Nothing in this module raises on
malformed input.
"""

from __future__ import annotations

import re
import shlex
import uuid
from typing import Iterable, Optional

from ssh_gateway.utils.logging import get_logger

log = get_logger(__name__)

# Characters that end a word and form operator tokens.  Newline separates
# commands in a shell, so it is an operator here rather than whitespace.
_PUNCTUATION = "();<>|&\n"
_WHITESPACE = " \t\r"
_REDIRECT_CHARS = frozenset("<>&")

_BACKTICK = re.compile(r"`([^`]*)`")

# Deeper substitutions are reported verbatim instead of being parsed
MAX_NESTING = 32


# ── Tokenizer ─────────────────────────────────────────────────────────────


class _Operator(str):
    """An operator token (``|``, ``&&``, ``;``, ``>``, ``(`` ...).

    Quoting is resolved before classification, so a quoted ``"|"`` also
    comes back as an operator.
    """

    @property
    def is_redirect(self) -> bool:
        return set(self) <= _REDIRECT_CHARS and ("<" in self or ">" in self)


def _tokenize(text: str) -> list[str]:
    """Split *text* with POSIX quoting rules.

    Raises ``ValueError`` on unbalanced quotes or a trailing escape.
    """
    lexer = shlex.shlex(text, posix=True, punctuation_chars=_PUNCTUATION)
    lexer.whitespace = _WHITESPACE
    lexer.whitespace_split = True
    # '#' would otherwise hide the rest of the line from the walk below
    lexer.commenters = ""

    tokens: list[str] = []
    for token in lexer:
        if token and all(ch in _PUNCTUATION for ch in token):
            tokens.append(_Operator(token))
        else:
            tokens.append(token)
    return tokens


# ── Substitution extraction ───────────────────────────────────────────────


def _skip_quoted(text: str, start: int) -> int:
    """Index just past the quoted run opening at *start*, or -1 if unclosed."""
    quote = text[start]
    j = start + 1
    while j < len(text):
        if text[j] == "\\" and quote == '"':
            j += 2
            continue
        if text[j] == quote:
            return j + 1
        j += 1
    return -1


def _replace_dollar_subs(text: str, nonce: str) -> tuple[str, list[str], set[str]]:
    """Replace each balanced ``$(...)`` with an opaque placeholder.

    Parentheses inside quotes or after a backslash do not count toward the
    balance.  Returns the cleaned string, the substitution bodies in order
    and the set of placeholders used.  An unterminated ``$(`` is left in
    place.
    """
    out: list[str] = []
    bodies: list[str] = []
    placeholders: set[str] = set()
    i = 0
    n = len(text)
    while i < n:
        if text.startswith("$(", i):
            depth = 1
            j = i + 2
            while j < n and depth > 0:
                ch = text[j]
                if ch == "\\":
                    j += 2
                    continue
                if ch in "'\"":
                    j = _skip_quoted(text, j)
                    if j < 0:
                        break
                    continue
                if ch == "(":
                    depth += 1
                elif ch == ")":
                    depth -= 1
                j += 1
            if depth == 0:
                placeholder = f"__SUB{nonce}_{len(bodies)}__"
                bodies.append(text[i + 2 : j - 1])
                placeholders.add(placeholder)
                out.append(placeholder)
                i = j
                continue
            out.append(text[i:])
            break
        out.append(text[i])
        i += 1
    return "".join(out), bodies, placeholders


# ── Token walk ────────────────────────────────────────────────────────────


def _collect(tokens: list[str], placeholders: set[str]) -> list[str]:
    found: list[str] = []
    expecting_command = True
    saw_substitution = False
    skip_redirect_target = False

    for index, token in enumerate(tokens):
        if isinstance(token, _Operator):
            if token.is_redirect:
                skip_redirect_target = True
            else:
                expecting_command = True
                saw_substitution = False
                skip_redirect_target = False
            continue

        if skip_redirect_target:
            # file name or fd of a redirection, never run
            skip_redirect_target = False
            if token not in placeholders:
                continue

        if token in placeholders:
            saw_substitution = True
            continue

        if token and not token.startswith("-"):
            if expecting_command:
                found.append(token)
                expecting_command = False
            elif saw_substitution:
                # output of $(...) often becomes the next program or its name
                found.append(token)
                saw_substitution = False

        if token == "--" and index + 1 < len(tokens):
            nxt = tokens[index + 1]
            if (
                not isinstance(nxt, _Operator)
                and nxt
                and not nxt.startswith("-")
                and nxt not in placeholders
            ):
                found.append(nxt)

    return found


def _dedupe(names: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        if name and name not in seen:
            seen.add(name)
            result.append(name)
    return result


def _extract(command: str, depth: int) -> list[str]:
    if depth > MAX_NESTING:
        body = command.strip()
        return [body] if body else []

    nested: list[str] = []

    for match in _BACKTICK.finditer(command):
        nested.extend(_extract(match.group(1), depth + 1))
    stripped = _BACKTICK.sub("", command)

    cleaned, bodies, placeholders = _replace_dollar_subs(stripped, uuid.uuid4().hex)
    for body in bodies:
        nested.extend(_extract(body, depth + 1))

    try:
        outer = _collect(_tokenize(cleaned), placeholders)
    except ValueError as exc:
        outer = stripped.split()[:1]
        if placeholders or "$(" in stripped or "`" in command:
            # substitution boundaries are unknown; report something no allowlist holds
            outer.append(command.strip())
        log.debug("command_filter.tokenize_failed", error=str(exc), fallback=outer)

    return _dedupe(nested + outer)


# ── Public API ────────────────────────────────────────────────────────────


def extract_base_commands(command: str) -> list[str]:
    """Return every distinct program name *command* would run.

    Commands inside substitutions come first (they run first), then the
    outer commands, each in first-seen order.

    >>> extract_base_commands("echo $(whoami)")
    ['whoami', 'echo']
    """
    return _extract(command, 0)


def has_shell_metacharacters(command: str) -> bool:
    """True when *command* chains, pipes, redirects or substitutes."""
    if "`" in command:
        return True
    try:
        tokens = _tokenize(command)
    except ValueError:
        return True
    return any(isinstance(token, _Operator) for token in tokens)


class CommandFilterResult:
    __slots__ = ("allowed", "reason", "commands")

    def __init__(self, allowed: bool, reason: str, commands: list[str] | None = None):
        self.allowed = allowed
        self.reason = reason
        self.commands = commands or []

    def __bool__(self) -> bool:
        return self.allowed


def check_command(
    command: str, allowed_commands: Optional[Iterable[str]],
) -> CommandFilterResult:
    """Check *command* against *allowed_commands*.

    ``None`` or an empty allowlist means no restriction.
    """
    allowlist = set(allowed_commands or ())
    if not allowlist:
        return CommandFilterResult(True, "no allowlist configured")

    commands = extract_base_commands(command)
    denied = [name for name in commands if name not in allowlist]
    if denied:
        log.info("command_filter.denied", command=command, denied=denied)
        return CommandFilterResult(
            False, f"not in allowlist: {', '.join(denied)}", commands,
        )
    return CommandFilterResult(True, "all commands allowlisted", commands)


def is_command_allowed(command: str, allowed_commands: Optional[Iterable[str]]) -> bool:
    return check_command(command, allowed_commands).allowed
