"""Rule matching for fakettp.

``matches()`` decides whether one rule applies to one request;
``first_match()`` walks the rules in declared order and stops at the first hit.

Route patterns use RE2 syntax and are searched, not anchored: ``/users/[0-9]+``
matches ``/api/users/12/credits.json`` unless the pattern itself uses ``^``/``$``.

IMPORT RULES:
  - `import re2` ONLY. `import re` is PROHIBITED in this package.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

import re2

from fakettp.config import Fake


@dataclass(frozen=True)
class RequestInfo:
    """The parts of an inbound request a rule can look at.

    path:        decoded URL path (``/api/users``)
    full_target: raw request target, path plus query (``/api/users?page=2``)
    body:        the fully buffered request body
    """

    method: str
    path: str
    full_target: str
    body: bytes = b""


class PatternCache:
    """Compiled route patterns, keyed by pattern text.

    One cache belongs to one Dispatcher and is dropped with it when the Config
    is replaced. A pattern that fails to compile is not cached: every lookup
    raises ``re2.error`` again.
    """

    def __init__(self) -> None:
        self._compiled: dict[str, "re2._Regexp"] = {}

    def get(self, pattern: str) -> "re2._Regexp":
        compiled = self._compiled.get(pattern)
        if compiled is None:
            compiled = re2.compile(pattern)
            self._compiled[pattern] = compiled
        return compiled

    def __len__(self) -> int:
        return len(self._compiled)


def _route_matches(request: RequestInfo, fake: Fake, patterns: Optional[PatternCache]) -> bool:
    if not fake.path:
        return True

    target = request.full_target if fake.use_request_uri else request.path

    if fake.is_regex:
        regex = patterns.get(fake.path) if patterns is not None else re2.compile(fake.path)
        return regex.search(target) is not None

    return fake.path == target


def _method_matches(method: str, allowed: tuple[str, ...]) -> bool:
    if not allowed:
        return True
    wanted = method.upper()
    return any(candidate.upper() == wanted for candidate in allowed)


def matches(request: RequestInfo, fake: Fake, patterns: Optional[PatternCache] = None) -> bool:
    """Return True when ``fake`` applies to ``request``.

    A rule with a ``request_body`` substring is body-triggered: the method
    list is ignored and the result is route AND body-contains.
    Otherwise the result is route AND method.

    Raises:
        re2.error: ``fake.path`` is a pattern that does not compile.
    """
    route = _route_matches(request, fake, patterns)

    if fake.request_body:
        return route and fake.request_body.encode("utf-8") in request.body

    return route and _method_matches(request.method, fake.methods)


def first_match(
    request: RequestInfo,
    fakes: Iterable[Fake],
    patterns: Optional[PatternCache] = None,
) -> Optional[Fake]:
    """Return the first rule (in declared order) that matches, or None."""
    for fake in fakes:
        if matches(request, fake, patterns):
            return fake
    return None
