"""Harvests cookies and tokens from the login browser into a Session."""

import asyncio
import inspect
import json
import logging
import uuid
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple, Union

from ..broker import BrokerAdapter, Provider
from ..errors import ExtractionTimeout
from ..utils.logging_utils import mask_secret
from .models import ExtractionResult, Session
from .session_store import SessionStore

logger = logging.getLogger(__name__)

# Generic token keys looked up in localStorage/sessionStorage for every provider
TOKEN_KEYS = ("authToken", "accessToken", "sessionToken", "jwt", "bearerToken")

# Installed into the login page once; reports token traffic as it happens
BOOTSTRAP_SCRIPT = """
(function() {
  var post = function(msg) {
    if (window.ReactNativeWebView) window.ReactNativeWebView.postMessage(JSON.stringify(msg));
  };
  var originalFetch = window.fetch;
  window.fetch = function(url, options) {
    var headers = (options && options.headers) || {};
    var auth = headers.Authorization || headers['authorization'];
    if (auth) post({type: 'authToken', token: auth, url: String(url)});
    return originalFetch.apply(this, arguments);
  };
  var originalSetItem = localStorage.setItem;
  localStorage.setItem = function(key, value) {
    var lower = String(key).toLowerCase();
    if (lower.indexOf('token') !== -1 || lower.indexOf('auth') !== -1) {
      post({type: 'storageUpdate', key: key, value: value});
    }
    return originalSetItem.apply(this, arguments);
  };
  var dump = function(storage) {
    var out = {};
    for (var i = 0; i < storage.length; i++) {
      var key = storage.key(i);
      if (key) out[key] = storage.getItem(key);
    }
    return out;
  };
  window.addEventListener('load', function() {
    setTimeout(function() {
      post({type: 'pageLoaded', authData: {
        cookies: document.cookie,
        localStorage: dump(localStorage),
        sessionStorage: dump(sessionStorage),
        tokens: {}
      }});
    }, 1000);
  });
})();
true;
"""

EXTRACTION_TEMPLATE = """
(function() {
  var requestId = %(request_id)s;
  var post = function(msg) {
    msg.requestId = requestId;
    window.ReactNativeWebView.postMessage(JSON.stringify(msg));
  };
  try {
    var dump = function(storage) {
      var out = {};
      for (var i = 0; i < storage.length; i++) {
        var key = storage.key(i);
        if (key) out[key] = storage.getItem(key);
      }
      return out;
    };
    var tokens = {};
    %(token_keys)s.forEach(function(key) {
      var value = localStorage.getItem(key) || sessionStorage.getItem(key);
      if (value) tokens[key] = value;
    });
    %(provider_script)s
    post({type: 'sessionExtracted', provider: %(provider)s, data: {
      cookies: document.cookie,
      localStorage: dump(localStorage),
      sessionStorage: dump(sessionStorage),
      tokens: tokens
    }});
  } catch (e) {
    post({type: 'scriptError', error: String(e)});
  }
})();
true;
"""


class BrowserHandle(Protocol):
    """The embedded browser the user logs in with.

    ``inject_script`` may be a plain or a coroutine function. Script output
    comes back asynchronously through ``SessionExtractor.handle_message``.
    """

    def inject_script(self, script: str) -> Any:
        ...


class SessionExtractor:
    """Turns a post-login navigation into a stored Session."""

    def __init__(
        self,
        store: SessionStore,
        adapters: Mapping[Provider, BrokerAdapter],
        ttl_seconds: float = 24 * 60 * 60,
        timeout: float = 10.0,
    ):
        """
        Initialize the extractor.

        Args:
            store: Store that receives extracted sessions
            adapters: Adapter per provider (login URLs, success patterns, scripts)
            ttl_seconds: Lifetime granted to a freshly extracted session
            timeout: Seconds to wait for the browser to post the script result
        """
        self.store = store
        self.adapters = dict(adapters)
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self._pending: Dict[str, Tuple[Provider, "asyncio.Future[Optional[Dict[str, Any]]]"]] = {}
        # Values seen through passive messages, used when the script never answers
        self._captured: Dict[Provider, Dict[str, Any]] = {}

    def get_login_url(self, provider: Union[str, Provider]) -> str:
        """Return the provider's login page URL."""
        return self._adapter(provider).login_url

    def is_login_success(self, provider: Union[str, Provider], current_url: str) -> bool:
        """Return True when the browser has reached an authenticated page."""
        return self._adapter(provider).is_login_success(current_url)

    def build_script(self, provider: Union[str, Provider], request_id: str) -> str:
        """Build the extraction script tagged with ``request_id``."""
        adapter = self._adapter(provider)
        return EXTRACTION_TEMPLATE % {
            "request_id": json.dumps(request_id),
            "provider": json.dumps(adapter.provider.value),
            "token_keys": json.dumps(list(TOKEN_KEYS) + list(adapter.storage_token_keys)),
            "provider_script": adapter.extraction_script(),
        }

    def bootstrap_script(self) -> str:
        """Script the browser should install on every page load."""
        return BOOTSTRAP_SCRIPT

    async def extract(
        self,
        provider: Union[str, Provider],
        browser: BrowserHandle,
        current_url: str,
        force: bool = False,
    ) -> ExtractionResult:
        """
        Extract a session from the browser.

        Args:
            provider: Provider being logged into
            browser: Browser collaborator able to run scripts
            current_url: URL the browser is currently showing
            force: Extract even if the URL does not look like a logged-in page

        Returns:
            ExtractionResult; ``success`` is False with "Not on success page yet"
            when the login has not completed
        """
        provider = Provider.parse(provider)
        if not force and not self.is_login_success(provider, current_url):
            return ExtractionResult(success=False, error="Not on success page yet")

        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (provider, future)
        logger.info(f"Extracting {provider} session (request {request_id[:8]})")

        error: Optional[str] = None
        payload: Optional[Dict[str, Any]] = None
        try:
            result = browser.inject_script(self.build_script(provider, request_id))
            if inspect.isawaitable(result):
                await result
            payload = await asyncio.wait_for(future, timeout=self.timeout)
            if payload is None:
                error = f"Extraction script failed for {provider}"
        except asyncio.TimeoutError:
            error = str(ExtractionTimeout(provider.value, self.timeout))
            logger.warning(error)
        except Exception as e:
            error = f"Failed to run extraction script for {provider}: {e}"
            logger.error(error)
        finally:
            self._pending.pop(request_id, None)

        if payload and self._has_credentials(payload):
            session = self.apply_extracted_message(provider, payload)
            logger.info(f"Extracted {provider} session with {len(session.tokens)} token(s)")
            return ExtractionResult(success=True, session=session)

        return self._fallback(provider, error or f"Extraction returned no credentials for {provider}")

    def _fallback(self, provider: Provider, error: str) -> ExtractionResult:
        existing = self.store.peek(provider)
        if existing is not None and not existing.is_active(self.store.clock()):
            existing = None

        if existing is not None and existing.tokens:
            self._captured.pop(provider, None)
            logger.info(f"Keeping existing {provider} session with tokens")
            return ExtractionResult(success=True, session=existing)

        captured = self._captured.get(provider)
        if captured and self._has_credentials(captured):
            session = self.apply_extracted_message(provider, {})
            logger.info(f"Built fallback {provider} session from captured data")
            return ExtractionResult(success=True, session=session)

        if existing is not None:
            self._captured.pop(provider, None)
            return ExtractionResult(success=True, session=existing)
        return ExtractionResult(success=False, error=error)

    def handle_message(self, provider: Union[str, Provider], message: Union[str, Mapping[str, Any]]) -> None:
        """
        Dispatch a message posted by the browser.

        Args:
            provider: Provider whose login page posted the message
            message: JSON string or already-decoded mapping with a ``type`` field
        """
        provider = Provider.parse(provider)
        if isinstance(message, str):
            try:
                message = json.loads(message)
            except ValueError:
                logger.warning(f"Ignoring non-JSON browser message for {provider}")
                return
        if not isinstance(message, Mapping):
            logger.warning(f"Ignoring browser message of type {type(message).__name__}")
            return

        msg_type = message.get("type")
        request_id = message.get("requestId")

        if msg_type in ("sessionExtracted", "authDataExtracted"):
            data = message.get("data")
            if isinstance(data, Mapping):
                if not self._resolve(request_id, dict(data)):
                    self.apply_extracted_message(provider, data)
        elif msg_type == "pageLoaded":
            auth_data = message.get("authData")
            if isinstance(auth_data, Mapping):
                self.apply_extracted_message(provider, auth_data)
        elif msg_type == "cookiesExtracted":
            cookies = message.get("cookies")
            if cookies:
                self._capture(provider).update(cookies=str(cookies))
                logger.debug(f"Captured {provider} cookies {mask_secret(str(cookies))}")
        elif msg_type == "authToken":
            token = message.get("token")
            if token:
                token = str(token)
                if token.lower().startswith("bearer "):
                    token = token[7:]
                self._capture(provider)["tokens"]["accessToken"] = token
                logger.debug(f"Captured {provider} auth token {mask_secret(token)}")
        elif msg_type == "storageUpdate":
            key, value = message.get("key"), message.get("value")
            if key and value:
                self._capture(provider)["tokens"][str(key)] = str(value)
                logger.debug(f"Captured {provider} storage key '{key}'")
        elif msg_type == "scriptResult":
            result = message.get("result")
            if isinstance(result, str):
                try:
                    result = json.loads(result)
                except ValueError:
                    result = None
            if isinstance(result, Mapping):
                self._resolve(request_id, dict(result))
        elif msg_type == "scriptError":
            logger.warning(f"Browser script error for {provider}: {message.get('error')}")
            self._resolve(request_id, None)
        else:
            logger.debug(f"Unhandled browser message type: {msg_type}")

    def apply_extracted_message(self, provider: Union[str, Provider], payload: Mapping[str, Any]) -> Session:
        """
        Merge extracted browser data into the provider's session.

        Creates the session when absent, extends its expiry by the configured
        TTL and persists the store.

        Args:
            provider: Provider the data belongs to
            payload: ``{cookies, localStorage, sessionStorage, tokens}``; any key may be missing

        Returns:
            The updated Session
        """
        provider = Provider.parse(provider)
        adapter = self._adapter(provider)
        session = self.store.peek(provider) or Session(provider=provider)

        captured = self._captured.pop(provider, None) or {}
        cookies = payload.get("cookies") or captured.get("cookies")
        if cookies:
            session.cookies = str(cookies)

        tokens: Dict[str, str] = dict(captured.get("tokens", {}))
        raw_tokens = payload.get("tokens")
        if isinstance(raw_tokens, Mapping):
            tokens.update({str(k): str(v) for k, v in raw_tokens.items() if v})

        wanted = TOKEN_KEYS + adapter.storage_token_keys + ("refreshToken", "userId")
        for storage_name in ("sessionStorage", "localStorage"):
            storage = payload.get(storage_name)
            if not isinstance(storage, Mapping):
                continue
            for key in wanted:
                if storage.get(key) and key not in tokens:
                    tokens[key] = str(storage[key])

        user_id = payload.get("userId") or tokens.pop("userId", None)
        if user_id:
            session.user_id = str(user_id)
        refresh_token = payload.get("refreshToken") or tokens.get("refreshToken")
        if refresh_token:
            session.refresh_token = str(refresh_token)

        session.tokens.update(tokens)
        session.expires_at = self.store.clock() + self.ttl_seconds
        self.store.put(session)
        logger.debug(
            f"Updated {provider} session: cookies {mask_secret(session.cookies)}, "
            f"tokens {sorted(session.tokens)}"
        )
        return session

    def pending_requests(self) -> int:
        """Number of extraction requests awaiting a browser reply."""
        return len(self._pending)

    def _resolve(self, request_id: Optional[str], payload: Optional[Dict[str, Any]]) -> bool:
        entry = self._pending.get(request_id) if request_id else None
        if entry is None:
            return False
        _, future = entry
        if not future.done():
            future.set_result(payload)
        return True

    def _capture(self, provider: Provider) -> Dict[str, Any]:
        return self._captured.setdefault(provider, {"cookies": "", "tokens": {}})

    @staticmethod
    def _has_credentials(payload: Mapping[str, Any]) -> bool:
        if payload.get("cookies"):
            return True
        tokens = payload.get("tokens")
        if isinstance(tokens, Mapping) and any(tokens.values()):
            return True
        for storage_name in ("localStorage", "sessionStorage"):
            storage = payload.get(storage_name)
            if isinstance(storage, Mapping) and any(storage.get(key) for key in TOKEN_KEYS):
                return True
        return False

    def _adapter(self, provider: Union[str, Provider]) -> BrokerAdapter:
        provider = Provider.parse(provider)
        try:
            return self.adapters[provider]
        except KeyError:
            raise ValueError(f"No adapter configured for {provider}") from None
