"""Request id generation for fakettp.

Each dispatched request is tagged with a 26-character ULID (Crockford Base32,
millisecond timestamp + random component). Ids sort by arrival time, which
keeps interleaved log lines of concurrent requests easy to follow.

Uses the `python-ulid` library; do not hand-roll ULID generation.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Example::

        request_id = generate_ulid()
        # "01KJ0JRVHYA7KX32VPN5ZSCTMV"
        assert len(request_id) == 26
    """
    return str(ULID())
