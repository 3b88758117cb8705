"""Background liveness checks for provider sessions."""

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from ..broker.models import Provider
from ..client.request_client import AuthenticatedRequestClient
from ..session.session_store import SessionStore

logger = logging.getLogger(__name__)

ProviderCallback = Callable[[Provider], Any]


@dataclass
class HeartbeatConfig:
    """Heartbeat settings for one provider."""

    interval_ms: int = 15 * 60 * 1000
    retry_attempts: int = 3
    on_session_expired: Optional[ProviderCallback] = None
    on_connection_lost: Optional[ProviderCallback] = None


class HeartbeatMonitor:
    """Keeps one repeating check per provider.

    A tick validates (or refreshes) the session, then calls the provider's
    connection check. An invalid session stops the heartbeat and fires
    ``on_session_expired``; ``retry_attempts`` consecutive connection failures
    stop it and fire ``on_connection_lost``. Stopping is cooperative: a tick
    already running finishes before the loop exits.
    """

    def __init__(
        self,
        client: AuthenticatedRequestClient,
        session_store: SessionStore,
        config: Optional[HeartbeatConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the monitor.

        Args:
            client: Client used for session validation and connection checks
            session_store: Store consulted for active sessions
            config: Defaults applied when ``start`` gets no config
            sleep: Awaitable sleep used between ticks
        """
        self.client = client
        self.session_store = session_store
        self.defaults = config or HeartbeatConfig()
        self.sleep = sleep
        self._configs: Dict[Provider, HeartbeatConfig] = {}
        self._tasks: Dict[Provider, "asyncio.Task[None]"] = {}
        self._retries: Dict[Provider, int] = {}
        self._ticking: Set["asyncio.Task[None]"] = set()
        self._paused: Set[Provider] = set()
        self._foreground = True

    def start(self, provider: Union[str, Provider], config: Optional[HeartbeatConfig] = None) -> None:
        """
        Start (or restart) the heartbeat for a provider.

        Must be called from within a running event loop.
        """
        provider = Provider.parse(provider)
        self._cancel(provider)
        cfg = config or replace(self.defaults)
        self._configs[provider] = cfg
        self._retries[provider] = 0
        self._paused.discard(provider)

        if not self._foreground:
            self._paused.add(provider)
            logger.info(f"App in background, heartbeat for {provider} will start on resume")
            return
        self._schedule(provider)
        logger.info(f"Started heartbeat for {provider} (interval: {cfg.interval_ms}ms)")

    def start_all(self, config: Optional[HeartbeatConfig] = None) -> List[Provider]:
        """Start heartbeats for every active session."""
        providers = self.session_store.active_providers()
        for provider in providers:
            self.start(provider, config)
        return providers

    def stop(self, provider: Union[str, Provider]) -> None:
        """Stop the heartbeat for a provider and forget its retry counter."""
        provider = Provider.parse(provider)
        was_running = self._cancel(provider)
        self._configs.pop(provider, None)
        self._retries.pop(provider, None)
        self._paused.discard(provider)
        if was_running:
            logger.info(f"Stopped heartbeat for {provider}")

    def stop_all(self) -> None:
        """Stop every heartbeat."""
        for provider in list(self._configs):
            self.stop(provider)

    def update_config(self, **changes: Any) -> HeartbeatConfig:
        """Update the defaults used by future ``start`` calls."""
        self.defaults = replace(self.defaults, **changes)
        return self.defaults

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        """
        Report heartbeat state per provider.

        Returns:
            ``{provider: {"active": bool, "retries": int}}``
        """
        return {
            provider.value: {
                "active": provider in self._tasks,
                "retries": self._retries.get(provider, 0),
            }
            for provider in self._configs
        }

    def destroy(self) -> None:
        """Stop everything; the monitor may not be reused."""
        self.stop_all()

    async def handle_app_state_change(self, is_foreground: bool) -> None:
        """
        React to the app moving between foreground and background.

        Backgrounding cancels every timer but keeps retry counters. Returning
        to the foreground restarts those timers and checks all active sessions
        immediately.
        """
        if not is_foreground:
            if not self._foreground:
                return
            self._foreground = False
            for provider in list(self._tasks):
                self._cancel(provider)
                self._paused.add(provider)
            logger.info("Paused all heartbeats")
            return

        if self._foreground:
            return
        self._foreground = True
        for provider in list(self._paused):
            self._schedule(provider)
        self._paused.clear()
        logger.info("Resumed all heartbeats")
        await self.check_all_sessions()

    async def check_all_sessions(self) -> Dict[str, bool]:
        """Run an immediate check for every active session."""
        results = {}
        for provider in self.session_store.active_providers():
            results[provider.value] = await self.check(provider)
        return results

    async def refresh_all(self) -> List[Dict[str, Any]]:
        """
        Validate (refreshing where needed) every active session.

        Timers are left untouched.

        Returns:
            ``[{"provider": str, "success": bool}]``
        """
        results = []
        for provider in self.session_store.active_providers():
            success = await self.client.validate_session(provider)
            results.append({"provider": provider.value, "success": success})
        return results

    async def check(self, provider: Union[str, Provider]) -> bool:
        """
        Perform one heartbeat check.

        Connection failures only count towards ``retry_attempts`` for providers
        with a started heartbeat.

        Returns:
            True if the session is valid and the provider answered
        """
        provider = Provider.parse(provider)
        cfg = self._configs.get(provider, self.defaults)

        if not await self.client.validate_session(provider):
            logger.warning(f"Session expired for {provider}, stopping heartbeat")
            self.stop(provider)
            await self._notify(cfg.on_session_expired, provider)
            return False

        if await self.client.check_connection(provider):
            if provider in self._retries:
                self._retries[provider] = 0
            logger.debug(f"Heartbeat successful for {provider}")
            return True

        if provider in self._configs:
            await self._record_failure(provider, cfg)
        else:
            logger.info(f"Connection check failed for {provider} (no heartbeat running)")
        return False

    async def _record_failure(self, provider: Provider, cfg: HeartbeatConfig) -> None:
        retries = self._retries.get(provider, 0) + 1
        self._retries[provider] = retries
        if retries >= cfg.retry_attempts:
            logger.warning(f"Max retries reached for {provider}, stopping heartbeat")
            self.stop(provider)
            await self._notify(cfg.on_connection_lost, provider)
        else:
            logger.info(f"Connection check failed for {provider}, retry {retries}/{cfg.retry_attempts}")

    def _schedule(self, provider: Provider) -> None:
        self._tasks[provider] = asyncio.get_running_loop().create_task(self._run(provider))

    def _cancel(self, provider: Provider) -> bool:
        task = self._tasks.pop(provider, None)
        if task is None:
            return False
        # A running tick sees it no longer owns the slot and exits after finishing
        if task not in self._ticking:
            task.cancel()
        return True

    async def _run(self, provider: Provider) -> None:
        me = asyncio.current_task()
        while self._tasks.get(provider) is me:
            cfg = self._configs.get(provider, self.defaults)
            await self.sleep(cfg.interval_ms / 1000)
            if self._tasks.get(provider) is not me:
                return
            self._ticking.add(me)
            try:
                await self.check(provider)
            except Exception as e:
                logger.error(f"Heartbeat error for {provider}: {e}", exc_info=True)
                if provider in self._configs:
                    await self._record_failure(provider, cfg)
            finally:
                self._ticking.discard(me)

    @staticmethod
    async def _notify(callback: Optional[ProviderCallback], provider: Provider) -> None:
        if callback is None:
            return
        try:
            result = callback(provider)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Heartbeat callback failed for {provider}: {e}", exc_info=True)
