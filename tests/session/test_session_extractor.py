"""Tests for session extraction from the login browser."""

import asyncio
import json
import re

import pytest

from brokerlink.broker import Provider
from brokerlink.session import SessionExtractor, SessionStore

REQUEST_ID = re.compile(r'var requestId = "([0-9a-f]+)"')


class FakeBrowser:
    """Browser stand-in that optionally answers injected scripts."""

    def __init__(self, extractor=None, provider=Provider.ROBINHOOD, reply=None):
        self.extractor = extractor
        self.provider = provider
        self.reply = reply
        self.scripts = []

    def inject_script(self, script):
        self.scripts.append(script)
        if self.reply is None:
            return
        request_id = REQUEST_ID.search(script).group(1)
        message = dict(self.reply, requestId=request_id)
        asyncio.get_running_loop().call_soon(self.extractor.handle_message, self.provider, json.dumps(message))


@pytest.fixture
def extractor(session_store, adapters):
    return SessionExtractor(session_store, adapters, ttl_seconds=24 * 3600, timeout=0.05)


class TestLoginDetection:
    """Tests for login URL and success detection."""

    def test_login_urls(self, extractor):
        assert extractor.get_login_url(Provider.ROBINHOOD) == "https://robinhood.com/login"
        assert extractor.get_login_url("webull") == "https://www.webull.com/login"

    @pytest.mark.parametrize("provider,url,expected", [
        (Provider.ROBINHOOD, "https://robinhood.com/dashboard", True),
        (Provider.ROBINHOOD, "https://robinhood.com/account/settings", True),
        (Provider.ROBINHOOD, "https://robinhood.com/login", False),
        (Provider.ROBINHOOD, "https://evil.example/dashboard", False),
        (Provider.WEBULL, "https://www.webull.com/trading", True),
        (Provider.WEBULL, "https://www.webull.com/portfolio?tab=1", True),
        (Provider.WEBULL, "https://www.webull.com/login", False),
        (Provider.WEBULL, "", False),
    ])
    def test_is_login_success(self, extractor, provider, url, expected):
        assert extractor.is_login_success(provider, url) is expected


class TestExtract:
    """Tests for the extraction request/response flow."""

    def test_not_on_success_page_has_no_side_effects(self, extractor, session_store):
        browser = FakeBrowser()

        result = asyncio.run(extractor.extract(Provider.ROBINHOOD, browser, "https://robinhood.com/login"))

        assert not result.success
        assert result.error == "Not on success page yet"
        assert browser.scripts == []
        assert session_store.peek(Provider.ROBINHOOD) is None

    def test_successful_extraction(self, extractor, session_store, clock, cipher, tmp_path):
        """Script reply is merged into a stored, persisted session."""
        reply = {
            "type": "sessionExtracted",
            "provider": "robinhood",
            "data": {
                "cookies": "sessionid=xyz",
                "localStorage": {"authToken": "stored-token", "theme": "dark"},
                "sessionStorage": {},
                "tokens": {"access_token": "bearer-token"},
            },
        }
        browser = FakeBrowser(extractor, Provider.ROBINHOOD, reply)

        async def run():
            return await extractor.extract(Provider.ROBINHOOD, browser, "https://robinhood.com/dashboard")

        result = asyncio.run(run())

        assert result.success
        session = result.session
        assert session.cookies == "sessionid=xyz"
        assert session.tokens == {"access_token": "bearer-token", "authToken": "stored-token"}
        assert session.expires_at == clock.now + 24 * 3600
        assert extractor.pending_requests() == 0

        reloaded = SessionStore(tmp_path / "sessions.enc", cipher, clock=clock)
        assert reloaded.load()[Provider.ROBINHOOD] == session

    def test_script_contains_provider_snippet_and_token_keys(self, extractor):
        script = extractor.build_script(Provider.WEBULL, "abc123")

        assert 'var requestId = "abc123"' in script
        assert "window.webull" in script
        assert '"wbAccessToken"' in script
        assert '"jwt"' in script

    def test_timeout_with_nothing_captured_fails(self, extractor):
        browser = FakeBrowser()

        result = asyncio.run(
            extractor.extract(Provider.ROBINHOOD, browser, "https://robinhood.com/dashboard")
        )

        assert not result.success
        assert "timed out" in result.error
        assert len(browser.scripts) == 1
        assert extractor.pending_requests() == 0

    def test_timeout_falls_back_to_captured_data(self, extractor, session_store):
        """Cookies and tokens seen before the timeout still produce a session."""
        extractor.handle_message(Provider.WEBULL, {"type": "cookiesExtracted", "cookies": "wb=1"})
        extractor.handle_message(Provider.WEBULL, {"type": "authToken", "token": "Bearer captured"})

        result = asyncio.run(
            extractor.extract(Provider.WEBULL, FakeBrowser(), "https://www.webull.com/trading")
        )

        assert result.success
        assert result.session.cookies == "wb=1"
        assert result.session.tokens == {"accessToken": "captured"}
        assert session_store.get(Provider.WEBULL) is result.session

    def test_timeout_keeps_existing_session_with_tokens(self, extractor, session_store, make_session):
        existing = make_session(Provider.ROBINHOOD, tokens={"access_token": "good"})
        session_store.put(existing)
        extractor.handle_message(Provider.ROBINHOOD, {"type": "cookiesExtracted", "cookies": "worse=1"})

        result = asyncio.run(
            extractor.extract(Provider.ROBINHOOD, FakeBrowser(), "https://robinhood.com/dashboard")
        )

        assert result.success
        assert result.session is existing
        assert existing.cookies != "worse=1"

        extractor.apply_extracted_message(Provider.ROBINHOOD, {})
        assert existing.cookies != "worse=1"

    def test_timeout_ignores_expired_existing_session(self, extractor, session_store, make_session):
        session_store.put(make_session(Provider.ROBINHOOD, expires_in=-3600, tokens={"access_token": "old"}))

        result = asyncio.run(
            extractor.extract(Provider.ROBINHOOD, FakeBrowser(), "https://robinhood.com/dashboard")
        )

        assert not result.success
        assert "timed out" in result.error
        assert session_store.get(Provider.ROBINHOOD) is None

    def test_timeout_prefers_captured_data_over_expired_session(self, extractor, session_store, make_session):
        session_store.put(make_session(Provider.ROBINHOOD, expires_in=-3600))
        extractor.handle_message(Provider.ROBINHOOD, {"type": "authToken", "token": "Bearer fresh"})

        result = asyncio.run(
            extractor.extract(Provider.ROBINHOOD, FakeBrowser(), "https://robinhood.com/dashboard")
        )

        assert result.success
        assert result.session.tokens["accessToken"] == "fresh"
        assert session_store.get(Provider.ROBINHOOD) is result.session

    def test_script_error_falls_back_immediately(self, session_store, adapters):
        extractor = SessionExtractor(session_store, adapters, timeout=30)
        browser = FakeBrowser(extractor, Provider.ROBINHOOD, {"type": "scriptError", "error": "boom"})

        async def run():
            return await asyncio.wait_for(
                extractor.extract(Provider.ROBINHOOD, browser, "https://robinhood.com/dashboard"),
                timeout=5,
            )

        result = asyncio.run(run())

        assert not result.success
        assert "script failed" in result.error

    def test_force_extracts_on_any_url(self, extractor):
        browser = FakeBrowser()
        asyncio.run(extractor.extract(Provider.ROBINHOOD, browser, "https://robinhood.com/login", force=True))
        assert len(browser.scripts) == 1


class TestMessages:
    """Tests for browser message handling."""

    def test_apply_merges_into_existing_session(self, extractor, session_store, make_session, clock):
        session_store.put(make_session(Provider.WEBULL, tokens={"accessToken": "old", "deviceId": "d1"}, expires_in=60))

        session = extractor.apply_extracted_message(Provider.WEBULL, {
            "cookies": "",
            "tokens": {"accessToken": "new"},
            "localStorage": {"refreshToken": "r-1", "userId": "42", "wbAccessToken": "wb"},
        })

        assert session.tokens == {"accessToken": "new", "deviceId": "d1", "refreshToken": "r-1", "wbAccessToken": "wb"}
        assert session.refresh_token == "r-1"
        assert session.user_id == "42"
        assert session.cookies == "sessionid=abc123; device_id=dev-1"
        assert session.expires_at == clock.now + 24 * 3600

    def test_page_loaded_creates_session(self, extractor, session_store):
        extractor.handle_message("robinhood", json.dumps({
            "type": "pageLoaded",
            "authData": {"cookies": "a=1", "localStorage": {}, "sessionStorage": {"jwt": "j"}, "tokens": []},
        }))

        session = session_store.get(Provider.ROBINHOOD)
        assert session.cookies == "a=1"
        assert session.tokens == {"jwt": "j"}

    def test_unmatched_session_extracted_is_applied(self, extractor, session_store):
        extractor.handle_message(Provider.WEBULL, {
            "type": "authDataExtracted",
            "requestId": "stale",
            "data": {"cookies": "c=1", "tokens": {"accessToken": "t"}},
        })
        assert session_store.get(Provider.WEBULL).tokens == {"accessToken": "t"}

    def test_storage_update_is_captured_not_persisted(self, extractor, session_store):
        extractor.handle_message(Provider.WEBULL, {"type": "storageUpdate", "key": "wbAccessToken", "value": "v"})
        assert session_store.peek(Provider.WEBULL) is None

    def test_invalid_messages_are_ignored(self, extractor, session_store):
        extractor.handle_message(Provider.ROBINHOOD, "{not json")
        extractor.handle_message(Provider.ROBINHOOD, json.dumps(["list"]))
        extractor.handle_message(Provider.ROBINHOOD, {"type": "somethingElse"})
        assert session_store.peek(Provider.ROBINHOOD) is None
