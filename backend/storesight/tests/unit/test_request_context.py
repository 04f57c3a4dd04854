"""Tests for identity and client info extraction from requests."""

from starlette.requests import Request

from storesight.platform.request_context import (
    extract_client_info,
    get_client_ip,
    get_session_id,
    get_shop_cookie,
)


def _request(headers=None, client=("10.0.0.1", 1234)) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "headers": raw, "client": client})


class TestClientIp:

    def test_first_forwarded_for_entry_wins(self):
        request = _request({"X-Forwarded-For": "1.1.1.1, 2.2.2.2", "X-Real-IP": "3.3.3.3"})
        assert get_client_ip(request) == "1.1.1.1"

    def test_real_ip_when_no_forwarded_for(self):
        assert get_client_ip(_request({"X-Real-IP": "3.3.3.3"})) == "3.3.3.3"

    def test_unknown_header_values_are_skipped(self):
        assert get_client_ip(_request({"X-Forwarded-For": "unknown"})) == "10.0.0.1"

    def test_no_request_gives_nothing(self):
        assert extract_client_info(None) == (None, None)

    def test_user_agent_is_returned(self):
        ip, agent = extract_client_info(_request({"User-Agent": "pytest"}))
        assert ip == "10.0.0.1"
        assert agent == "pytest"


class TestIdentity:

    def test_session_id_from_cookie(self):
        request = _request({"Cookie": "SESSION_ID=abc; shop=a.myshopify.com"})
        assert get_session_id(request) == "abc"
        assert get_shop_cookie(request) == "a.myshopify.com"

    def test_session_id_from_header(self):
        assert get_session_id(_request({"X-Session-Id": " xyz "})) == "xyz"

    def test_blank_values_are_none(self):
        request = _request({"Cookie": "SESSION_ID=; shop="})
        assert get_session_id(request) is None
        assert get_shop_cookie(request) is None
