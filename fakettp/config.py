"""Config loading and assembly for fakettp.

The effective Config is built once at startup from two sources:

  1. A declarative JSON rule file (``-config``), parsed by ``parse_config()``.
  2. Ad hoc command-line parameters, carried as an ``Overrides`` value.

``assemble()`` merges them with a fixed precedence and is a pure function of
its inputs. ``load_config()`` is the startup wrapper: it reads the file and
turns every configuration error into a ``CONFIG ERROR`` line on stderr plus
``SystemExit(1)``.

Merge rules:
  - Non-zero overrides win field by field: port, proxy_host, proxy_port,
    proxy_delay.
  - port defaults to 5000; proxy_port inherits port when still unset.
  - Rules: file rules + override path → override rule appended last;
    no file rules + any rule-shaped override → override rule is the only rule;
    otherwise no rule is added (pure passthrough).
"""

from __future__ import annotations

import dataclasses
import json
import sys
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

import re2

from fakettp.constants import DEFAULT_PORT
from fakettp.utils.durations import DurationParseError, format_duration, parse_duration
from fakettp.utils.logger import get_logger

logger = get_logger(__name__)

__all__ = [
    "Config",
    "ConfigParseError",
    "DurationParseError",
    "Fake",
    "Overrides",
    "assemble",
    "load_config",
    "parse_config",
]


class ConfigParseError(ValueError):
    """Raised when the declarative config is not valid JSON of the expected shape."""


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Fake:
    """One hyjack rule: what to match and what to answer with.

    Matching:
        path:            literal path, or an RE2 pattern when ``is_regex``.
                         Empty matches every path.
        methods:         HTTP methods (case-insensitive). Empty matches any.
        request_body:    substring the request body must contain. When set it
                         replaces the method check entirely.
        is_regex:        search ``path`` as a pattern instead of comparing.
        use_request_uri: match against path + raw query instead of path only.

    Response:
        code, body, headers (``"Name: Value"`` strings, in order), delay.
    """

    path: str = ""
    methods: tuple[str, ...] = ()
    request_body: str = ""
    body: str = ""
    code: int = 0
    headers: tuple[str, ...] = ()
    delay: timedelta = timedelta(0)
    is_regex: bool = False
    use_request_uri: bool = False

    def __str__(self) -> str:
        methods = f"[{' '.join(self.methods)}]" if self.methods else "[ALL METHODS]"
        path = self.path or "all paths"
        headers = f"[{' '.join(self.headers)}]"
        return (
            f"fake: {methods} {path} -> code {self.code}, headers {headers}, "
            f"time {format_duration(self.delay)}, body `{self.body}`"
        )


@dataclass(frozen=True)
class Config:
    """Process-wide settings plus the ordered rule list. First matching rule wins."""

    proxy_host: str = ""
    proxy_port: int = 0
    port: int = 0
    proxy_delay: timedelta = timedelta(0)
    fakes: tuple[Fake, ...] = ()
    path: Optional[str] = None  # source file, kept for reload


@dataclass(frozen=True)
class Overrides:
    """Command-line parameters. Zero / empty values mean "not supplied"."""

    port: int = 0
    code: int = 0
    time: timedelta = timedelta(0)
    body: str = ""
    headers: tuple[str, ...] = ()
    methods: tuple[str, ...] = ()
    request_body: str = ""
    hyjack: str = ""
    pattern_match: bool = False
    request_uri: bool = False
    proxy_host: str = ""
    proxy_port: int = 0
    proxy_delay: timedelta = timedelta(0)

    def implies_rule(self) -> bool:
        """True when any parameter only makes sense as part of a rule."""
        return bool(
            self.headers or self.hyjack or self.code or self.time or self.methods
        )

    def to_fake(self) -> Fake:
        return Fake(
            path=self.hyjack,
            methods=tuple(self.methods),
            request_body=self.request_body,
            body=self.body,
            code=self.code,
            headers=tuple(self.headers),
            delay=self.time,
            is_regex=self.pattern_match,
            use_request_uri=self.request_uri,
        )


# ─── Declarative source ───────────────────────────────────────────────────────


def _typed(raw: dict, key: str, expected: type, default: Any, where: str) -> Any:
    """Fetch ``raw[key]`` checking its JSON type; null and missing give ``default``."""
    value = raw.get(key)
    if value is None:
        return default
    # bool is an int subclass; JSON true is never a valid port or code
    if expected is int and (isinstance(value, bool) or not isinstance(value, int)):
        raise ConfigParseError(f"{where}{key}: expected an integer, got {value!r}")
    if not isinstance(value, expected):
        raise ConfigParseError(
            f"{where}{key}: expected {expected.__name__}, got {type(value).__name__}"
        )
    return value


def _string_list(raw: dict, key: str, where: str) -> tuple[str, ...]:
    values = _typed(raw, key, list, [], where)
    for item in values:
        if not isinstance(item, str):
            raise ConfigParseError(f"{where}{key}: expected strings, got {item!r}")
    return tuple(values)


def _duration(raw: dict, key: str, where: str) -> timedelta:
    text = _typed(raw, key, str, "", where)
    if not text:
        return timedelta(0)
    try:
        return parse_duration(text)
    except DurationParseError as exc:
        raise DurationParseError(f"{where}{key}: {exc}") from None


def _fake_from_dict(raw: Any, index: int) -> Fake:
    where = f"fakes[{index}]."
    if not isinstance(raw, dict):
        raise ConfigParseError(f"fakes[{index}]: expected an object, got {raw!r}")
    return Fake(
        path=_typed(raw, "hyjack", str, "", where),
        methods=_string_list(raw, "methods", where),
        request_body=_typed(raw, "request_body", str, "", where),
        body=_typed(raw, "body", str, "", where),
        code=_typed(raw, "code", int, 0, where),
        headers=_string_list(raw, "headers", where),
        delay=_duration(raw, "time", where),
        is_regex=_typed(raw, "pattern_match", bool, False, where),
        use_request_uri=_typed(raw, "request_uri", bool, False, where),
    )


def parse_config(source: bytes) -> Config:
    """Parse the declarative JSON source into a Config (no defaults applied).

    Unknown keys are ignored.

    Raises:
        ConfigParseError: malformed JSON, non-object top level, wrong field type.
        DurationParseError: malformed ``proxy_delay`` or rule ``time``.
    """
    try:
        raw = json.loads(source)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ConfigParseError(f"parsing json error - {exc}") from None

    if not isinstance(raw, dict):
        raise ConfigParseError(
            f"parsing json error - top level must be an object, got {type(raw).__name__}"
        )

    fakes_raw = _typed(raw, "fakes", list, [], "")
    return Config(
        proxy_host=_typed(raw, "proxy_host", str, "", ""),
        proxy_port=_typed(raw, "proxy_port", int, 0, ""),
        port=_typed(raw, "port", int, 0, ""),
        proxy_delay=_duration(raw, "proxy_delay", ""),
        fakes=tuple(_fake_from_dict(item, i) for i, item in enumerate(fakes_raw)),
    )


# ─── Assembly ─────────────────────────────────────────────────────────────────


def _warn_on_bad_pattern(fake: Fake) -> None:
    if not fake.is_regex or not fake.path:
        return
    try:
        re2.compile(fake.path)
    except re2.error as exc:
        logger.warning(
            "hyjack pattern does not compile; matching requests will fail",
            pattern=fake.path,
            error=str(exc),
        )


def assemble(source: bytes, overrides: Overrides) -> Config:
    """Merge the declarative source with command-line overrides.

    Args:
        source:    Raw bytes of the JSON rule file (empty when no file was given).
        overrides: Command-line parameters.

    Returns:
        The effective, immutable Config.

    Raises:
        ConfigParseError, DurationParseError: from ``parse_config()``.
    """
    config = parse_config(source) if source else Config()

    for fake in config.fakes:
        logger.info("creating hyjack", fake=str(fake))

    port = overrides.port or config.port or DEFAULT_PORT
    proxy_host = overrides.proxy_host or config.proxy_host
    proxy_port = overrides.proxy_port or config.proxy_port or port
    proxy_delay = overrides.proxy_delay or config.proxy_delay

    fakes = config.fakes
    if fakes and overrides.hyjack:
        logger.info("appending fake based on parameters")
        fakes = fakes + (overrides.to_fake(),)
    elif not fakes and overrides.implies_rule():
        logger.info("creating fake based on parameters")
        fakes = (overrides.to_fake(),)
        logger.info("creating hyjack", fake=str(fakes[0]))

    for fake in fakes:
        _warn_on_bad_pattern(fake)

    return dataclasses.replace(
        config,
        port=port,
        proxy_host=proxy_host,
        proxy_port=proxy_port,
        proxy_delay=proxy_delay,
        fakes=fakes,
    )


# ─── Startup loading ──────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None, overrides: Optional[Overrides] = None) -> Config:
    """Read the rule file (if any) and assemble the effective Config.

    Raises:
        SystemExit(1): unreadable file, malformed JSON, malformed duration.
    """
    overrides = overrides or Overrides()
    source = b""

    if config_path:
        logger.info("Loading config", path=config_path)
        try:
            with open(config_path, "rb") as fh:
                source = fh.read()
        except OSError as exc:
            msg = f"CONFIG ERROR: Could not read {config_path}: {exc}"
            print(msg, file=sys.stderr)
            raise SystemExit(1)

    try:
        config = assemble(source, overrides)
    except DurationParseError as exc:
        msg = f"CONFIG ERROR: converting string delay to time duration - {exc}"
        print(msg, file=sys.stderr)
        raise SystemExit(1)
    except ConfigParseError as exc:
        msg = f"CONFIG ERROR: {config_path}: {exc}"
        print(msg, file=sys.stderr)
        raise SystemExit(1)

    config = dataclasses.replace(config, path=config_path)
    logger.info(
        "Config loaded",
        path=config_path,
        port=config.port,
        proxy_host=config.proxy_host,
        proxy_port=config.proxy_port,
        fakes=len(config.fakes),
    )
    return config
