"""Tests for the encrypted session store."""

import json

from cryptography.fernet import Fernet

from brokerlink.broker import Provider
from brokerlink.session import Session, SessionCipher, SessionStore


class TestSessionModel:
    """Tests for Session serialization."""

    def test_to_dict_uses_camel_case(self):
        """to_dict() emits camelCase keys and omits empty optionals."""
        session = Session(provider=Provider.WEBULL, cookies="a=b", tokens={"accessToken": "t"}, expires_at=123.0)
        result = session.to_dict()

        assert result == {
            "provider": "webull",
            "cookies": "a=b",
            "tokens": {"accessToken": "t"},
            "expiresAt": 123.0,
        }

    def test_from_dict_round_trip(self):
        """from_dict() restores optional fields."""
        session = Session(
            provider=Provider.ROBINHOOD,
            cookies="a=b",
            tokens={"access_token": "t"},
            expires_at=99.5,
            user_id="user-1",
            refresh_token="refresh-1",
        )
        assert Session.from_dict(session.to_dict()) == session

    def test_is_active(self):
        session = Session(provider=Provider.ROBINHOOD, expires_at=100.0)
        assert session.is_active(now=99.9)
        assert not session.is_active(now=100.0)


class TestSessionStore:
    """Tests for SessionStore persistence."""

    def test_save_then_load_drops_expired(self, session_store, make_session, cipher, clock, tmp_path):
        """A fresh store loads the saved sessions minus expired ones."""
        active = make_session(Provider.ROBINHOOD, user_id="u1", refresh_token="r1")
        expired = make_session(Provider.WEBULL, expires_in=-1)
        session_store.put(active)
        session_store.put(expired)

        reloaded = SessionStore(tmp_path / "sessions.enc", cipher, clock=clock)
        sessions = reloaded.load()

        assert sessions == {Provider.ROBINHOOD: active}
        assert reloaded.peek(Provider.WEBULL) is None

    def test_blob_is_encrypted_at_rest(self, session_store, make_session, tmp_path):
        session_store.put(make_session(cookies="super-secret-cookie"))

        raw = (tmp_path / "sessions.enc").read_bytes()
        assert b"super-secret-cookie" not in raw
        assert b"robinhood" not in raw

    def test_get_ignores_expired_but_peek_does_not(self, session_store, make_session, clock):
        session_store.put(make_session(expires_in=10))
        clock.advance(20)

        assert session_store.get(Provider.ROBINHOOD) is None
        assert session_store.peek(Provider.ROBINHOOD) is not None
        assert session_store.active_providers() == []

    def test_get_accepts_string_provider(self, session_store, make_session):
        session = make_session()
        session_store.put(session)
        assert session_store.get("robinhood") is session

    def test_corrupted_blob_means_no_sessions(self, session_store, tmp_path):
        """Garbage on disk is treated as an empty store."""
        (tmp_path / "sessions.enc").write_bytes(b"not a fernet token")
        assert session_store.load() == {}
        assert session_store.active_providers() == []

    def test_blob_from_other_key_means_no_sessions(self, session_store, make_session, clock, tmp_path):
        session_store.put(make_session())
        other = SessionStore(tmp_path / "sessions.enc", SessionCipher(key=Fernet.generate_key()), clock=clock)
        assert other.load() == {}

    def test_malformed_entries_are_skipped(self, cipher, clock, tmp_path, make_session):
        """Unknown providers and bad fields are skipped, valid entries survive."""
        good = make_session(Provider.WEBULL)
        payload = {
            "webull": good.to_dict(),
            "etrade": {"provider": "etrade", "cookies": "", "tokens": {}, "expiresAt": clock.now + 100},
            "robinhood": {"provider": "robinhood", "tokens": {}, "expiresAt": "soon"},
        }
        path = tmp_path / "sessions.enc"
        path.write_bytes(cipher.encrypt(json.dumps(payload)))

        store = SessionStore(path, cipher, clock=clock)
        assert store.load() == {Provider.WEBULL: good}

    def test_clear_removes_one_provider(self, session_store, make_session, cipher, clock, tmp_path):
        session_store.put(make_session(Provider.ROBINHOOD))
        session_store.put(make_session(Provider.WEBULL))
        session_store.clear(Provider.ROBINHOOD)

        reloaded = SessionStore(tmp_path / "sessions.enc", cipher, clock=clock)
        assert list(reloaded.load()) == [Provider.WEBULL]

    def test_clear_all_deletes_blob(self, session_store, make_session, tmp_path):
        session_store.put(make_session())
        session_store.clear_all()

        assert not (tmp_path / "sessions.enc").exists()
        assert session_store.active_providers() == []

    def test_save_failure_is_logged_not_raised(self, cipher, clock, tmp_path, make_session):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        store = SessionStore(blocker / "sessions.enc", cipher, clock=clock)

        store.put(make_session())

        assert store.save() is False
        assert store.get(Provider.ROBINHOOD) is not None
