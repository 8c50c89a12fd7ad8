"""Unit tests for the Dispatcher decision flow.

Covers:
  - rule hyjack (code, body, headers, rule delay)
  - unmatched requests forwarded after proxy_delay
  - X-Return-* overrides beating every rule
  - X-Return-Delay replacing proxy_delay
  - body-triggered rules
  - malformed rule headers skipped, code 0 written as 200
  - reconfiguration by building a fresh Dispatcher
"""

from __future__ import annotations

import dataclasses
from datetime import timedelta

import pytest
import re2

from conftest import FakeForwarder, RecordingSleep, make_request
from fakettp.config import Config, Fake
from fakettp.proxy.dispatcher import Dispatcher
from fakettp.proxy.forwarder import ProxyTarget

BAR_RULE = Fake(
    path="/bar",
    methods=("GET",),
    code=418,
    body="hyjacked",
    headers=("Cache-Control: max-age=3600",),
)

CATCH_RULE = Fake(
    path="/bar",
    methods=("POST",),
    request_body="catch me",
    code=202,
    body="caught",
)


def _config(*fakes: Fake, proxy_delay: timedelta = timedelta(0)) -> Config:
    return Config(
        proxy_host="apid.docker",
        proxy_port=9092,
        port=5000,
        proxy_delay=proxy_delay,
        fakes=fakes,
    )


def _dispatcher(
    config: Config, forwarder: FakeForwarder, sleeper: RecordingSleep
) -> Dispatcher:
    return Dispatcher(config, forwarder, sleep=sleeper)


class TestRuleHyjack:
    @pytest.mark.asyncio
    async def test_matching_rule_answers(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(_config(BAR_RULE), forwarder, sleeper)
        response = await dispatcher.dispatch(make_request("GET", "/bar"))

        assert response.status_code == 418
        assert response.body == b"hyjacked"
        assert response.headers["cache-control"] == "max-age=3600"
        assert forwarder.calls == []

    @pytest.mark.asyncio
    async def test_unmatched_method_is_forwarded(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(_config(BAR_RULE), forwarder, sleeper)
        response = await dispatcher.dispatch(make_request("POST", "/bar", body=b"data"))

        assert response.body == b"proxied"
        assert forwarder.calls == [
            ("POST", "/bar", b"data", ProxyTarget("http", "apid.docker", 9092))
        ]

    @pytest.mark.asyncio
    async def test_rule_delay_waited(self, forwarder, sleeper) -> None:
        fake = dataclasses.replace(BAR_RULE, delay=timedelta(milliseconds=1015))
        dispatcher = _dispatcher(
            _config(fake, proxy_delay=timedelta(milliseconds=3)), forwarder, sleeper
        )
        await dispatcher.dispatch(make_request("GET", "/bar"))
        assert sleeper.calls == [1.015]

    @pytest.mark.asyncio
    async def test_no_rule_delay_no_wait(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(
            _config(BAR_RULE, proxy_delay=timedelta(seconds=1)), forwarder, sleeper
        )
        await dispatcher.dispatch(make_request("GET", "/bar"))
        assert sleeper.calls == []

    @pytest.mark.asyncio
    async def test_code_zero_written_as_200(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(_config(Fake(path="/ok", body="fine")), forwarder, sleeper)
        response = await dispatcher.dispatch(make_request("GET", "/ok"))
        assert response.status_code == 200
        assert response.body == b"fine"

    @pytest.mark.asyncio
    async def test_malformed_header_skipped(self, forwarder, sleeper) -> None:
        fake = Fake(path="/h", headers=("Broken", "X-Good: yes", "X-Empty:"))
        dispatcher = _dispatcher(_config(fake), forwarder, sleeper)
        response = await dispatcher.dispatch(make_request("GET", "/h"))

        assert response.headers["x-good"] == "yes"
        assert "broken" not in response.headers
        assert "x-empty" not in response.headers

    @pytest.mark.asyncio
    async def test_repeated_rule_headers_all_written(self, forwarder, sleeper) -> None:
        fake = Fake(path="/c", headers=("Set-Cookie: a=1", "Set-Cookie: b=2"))
        dispatcher = _dispatcher(_config(fake), forwarder, sleeper)
        response = await dispatcher.dispatch(make_request("GET", "/c"))
        assert response.headers.getlist("set-cookie") == ["a=1", "b=2"]

    @pytest.mark.asyncio
    async def test_first_rule_wins(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(
            _config(Fake(code=500), BAR_RULE), forwarder, sleeper
        )
        response = await dispatcher.dispatch(make_request("GET", "/bar"))
        assert response.status_code == 500


class TestForwarding:
    @pytest.mark.asyncio
    async def test_no_rules_forwards_everything(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(_config(), forwarder, sleeper)
        await dispatcher.dispatch(make_request("DELETE", "/anything"))
        assert [call[:2] for call in forwarder.calls] == [("DELETE", "/anything")]

    @pytest.mark.asyncio
    async def test_proxy_delay_waited_before_forwarding(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(
            _config(proxy_delay=timedelta(milliseconds=3)), forwarder, sleeper
        )
        await dispatcher.dispatch(make_request())
        assert sleeper.calls == [0.003]
        assert len(forwarder.calls) == 1

    @pytest.mark.asyncio
    async def test_header_delay_replaces_proxy_delay(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(
            _config(proxy_delay=timedelta(seconds=1)), forwarder, sleeper
        )
        await dispatcher.dispatch(make_request(headers=[("X-Return-Delay", "200ms")]))
        assert sleeper.calls == [0.2]
        assert len(forwarder.calls) == 1

    @pytest.mark.asyncio
    async def test_unparseable_header_delay_falls_back_to_proxy_delay(
        self, forwarder, sleeper
    ) -> None:
        dispatcher = _dispatcher(
            _config(proxy_delay=timedelta(seconds=1)), forwarder, sleeper
        )
        await dispatcher.dispatch(make_request(headers=[("X-Return-Delay", "soon")]))
        assert sleeper.calls == [1.0]

    @pytest.mark.asyncio
    async def test_body_forwarded_unchanged(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(_config(), forwarder, sleeper)
        payload = b"\x00\x01binary\xff"
        await dispatcher.dispatch(make_request("PUT", "/blob", body=payload))
        assert forwarder.calls[0][2] == payload

    @pytest.mark.asyncio
    async def test_delay_on_rule_route_does_not_apply_to_matched_rule(
        self, forwarder, sleeper
    ) -> None:
        """X-Return-Delay alone neither hyjacks nor delays a rule response."""
        dispatcher = _dispatcher(_config(BAR_RULE), forwarder, sleeper)
        response = await dispatcher.dispatch(
            make_request("GET", "/bar", headers=[("X-Return-Delay", "200ms")])
        )
        assert response.status_code == 418
        assert sleeper.calls == []


class TestOverrideHyjack:
    HEADERS = [
        ("X-Return-Code", "411"),
        ("X-Return-Data", "overridden"),
        ("X-Return-Headers", '{"X-Custom-Header":["custom value"]}'),
        ("X-Return-Delay", "200ms"),
    ]

    @pytest.mark.asyncio
    async def test_override_response(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(_config(BAR_RULE), forwarder, sleeper)
        response = await dispatcher.dispatch(make_request("GET", "/bar", headers=self.HEADERS))

        assert response.status_code == 411
        assert response.body == b"overridden"
        assert response.headers["x-custom-header"] == "custom value"
        assert sleeper.calls == [0.2]
        assert forwarder.calls == []

    @pytest.mark.asyncio
    async def test_override_without_delay_uses_proxy_delay(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(
            _config(proxy_delay=timedelta(milliseconds=3)), forwarder, sleeper
        )
        response = await dispatcher.dispatch(
            make_request(headers=[("X-Return-Data", "x")])
        )
        assert response.status_code == 200
        assert sleeper.calls == [0.003]

    @pytest.mark.asyncio
    async def test_override_code_only_has_empty_body(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(_config(), forwarder, sleeper)
        response = await dispatcher.dispatch(make_request(headers=[("X-Return-Code", "404")]))
        assert response.status_code == 404
        assert response.body == b""

    @pytest.mark.asyncio
    async def test_failed_override_falls_through_to_rules(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(_config(BAR_RULE), forwarder, sleeper)
        response = await dispatcher.dispatch(
            make_request("GET", "/bar", headers=[("X-Return-Headers", "{not json")])
        )
        assert response.status_code == 418


class TestBodyTriggeredRule:
    @pytest.mark.asyncio
    async def test_matching_body_hyjacked(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(_config(CATCH_RULE), forwarder, sleeper)
        response = await dispatcher.dispatch(make_request("POST", "/bar", body=b"catch me"))
        assert response.status_code == 202
        assert response.body == b"caught"

    @pytest.mark.asyncio
    async def test_other_body_forwarded(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(_config(CATCH_RULE), forwarder, sleeper)
        response = await dispatcher.dispatch(
            make_request("POST", "/bar", body=b"some other text")
        )
        assert response.body == b"proxied"
        assert forwarder.calls[0][2] == b"some other text"


class TestReconfiguration:
    @pytest.mark.asyncio
    async def test_fresh_dispatcher_with_pattern_rule(self, forwarder, sleeper) -> None:
        config = _config(BAR_RULE)
        pattern_rule = Fake(path=r"/users/[0-9]+", is_regex=True, code=404)
        dispatcher = _dispatcher(
            dataclasses.replace(config, fakes=(pattern_rule,)), forwarder, sleeper
        )

        response = await dispatcher.dispatch(make_request("GET", "/api/users/12/credits.json"))
        assert response.status_code == 404
        assert len(dispatcher.patterns) == 1

        # the original config is untouched
        assert config.fakes == (BAR_RULE,)

    @pytest.mark.asyncio
    async def test_request_uri_rule(self, forwarder, sleeper) -> None:
        rule = Fake(path="/search?q=cats", use_request_uri=True, code=204)
        dispatcher = _dispatcher(_config(rule), forwarder, sleeper)

        hit = await dispatcher.dispatch(make_request("GET", "/search", query=b"q=cats"))
        miss = await dispatcher.dispatch(make_request("GET", "/search", query=b"q=dogs"))
        assert hit.status_code == 204
        assert miss.body == b"proxied"

    @pytest.mark.asyncio
    async def test_bad_pattern_raises(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(
            _config(Fake(path="(", is_regex=True)), forwarder, sleeper
        )
        with pytest.raises(re2.error):
            await dispatcher.dispatch(make_request())


class TestUnusableInput:
    @pytest.mark.asyncio
    async def test_out_of_range_header_delay_falls_back(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(
            _config(proxy_delay=timedelta(milliseconds=3)), forwarder, sleeper
        )
        response = await dispatcher.dispatch(
            make_request("GET", "/elsewhere", headers=[("X-Return-Delay", "99999999999999h")])
        )
        assert response.body == b"proxied"
        assert sleeper.calls == [0.003]

    @pytest.mark.asyncio
    async def test_non_latin1_rule_header_skipped(self, forwarder, sleeper) -> None:
        fake = Fake(path="/h", code=201, headers=("X-A: 中", "X-B: ok"))
        dispatcher = _dispatcher(_config(fake), forwarder, sleeper)
        response = await dispatcher.dispatch(make_request("GET", "/h"))

        assert response.status_code == 201
        assert "x-a" not in response.headers
        assert response.headers["x-b"] == "ok"

    @pytest.mark.asyncio
    async def test_non_latin1_override_header_falls_through(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(_config(BAR_RULE), forwarder, sleeper)
        response = await dispatcher.dispatch(
            make_request("GET", "/bar", headers=[("X-Return-Headers", '{"X-A":["\\u4e2d"]}')])
        )
        assert response.status_code == 418


class TestEncodedPath:
    @pytest.mark.asyncio
    async def test_rule_matches_decoded_path_with_question_mark(
        self, forwarder, sleeper
    ) -> None:
        dispatcher = _dispatcher(_config(Fake(path="/a?b", code=202)), forwarder, sleeper)
        response = await dispatcher.dispatch(
            make_request("GET", "/a?b", raw_path=b"/a%3Fb")
        )
        assert response.status_code == 202

    @pytest.mark.asyncio
    async def test_encoded_path_forwarded_raw(self, forwarder, sleeper) -> None:
        dispatcher = _dispatcher(_config(Fake(path="/a", code=500)), forwarder, sleeper)
        response = await dispatcher.dispatch(
            make_request("GET", "/a#b", raw_path=b"/a%23b")
        )
        assert response.body == b"proxied"
        assert forwarder.calls[0][1] == "/a#b"
