"""Permission gate for side-effecting capabilities.

Every capability whose side effect is not ``none`` passes through
``PermissionGate.authorize`` before its first invocation. The current
``PermissionMode`` decides whether the action is allowed outright,
denied outright, or turned into a ``PermissionRequest`` that suspends
until someone resolves it.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from .errors import PermissionDeniedError, PermissionModeLockedError, TurnCancelled
from .models import PermissionMode, PermissionRequest, SideEffect

if TYPE_CHECKING:
    from eames.adapters.permission_store import PermissionStore

    from .cancellation import CancellationToken
    from .capabilities import Capability
    from .config import PermissionCallback

logger = logging.getLogger(__name__)

RequestPublisher = Callable[[PermissionRequest], Awaitable[None]]

MODE_LABELS: dict[PermissionMode, str] = {
    PermissionMode.PROMPT: "PROMPT",
    PermissionMode.AUTO_ACCEPT_EDITS: "AUTO-ACCEPT",
    PermissionMode.PLAN_ONLY: "PLAN-ONLY",
    PermissionMode.BYPASS: "BYPASS",
}

# Names used by the agent SDK for the same modes.
SDK_MODE_NAMES: dict[PermissionMode, str] = {
    PermissionMode.PROMPT: "default",
    PermissionMode.AUTO_ACCEPT_EDITS: "acceptEdits",
    PermissionMode.PLAN_ONLY: "plan",
    PermissionMode.BYPASS: "bypassPermissions",
}


def parse_mode(value: str) -> PermissionMode:
    """Accept either our mode names or the SDK's."""
    for mode, sdk_name in SDK_MODE_NAMES.items():
        if value == sdk_name:
            return mode
    return PermissionMode(value)


class PermissionGate:
    """Decides whether a side-effecting action may run."""

    def __init__(
        self,
        mode: PermissionMode = PermissionMode.PROMPT,
        *,
        on_request: RequestPublisher | None = None,
        callback: PermissionCallback | None = None,
        store: PermissionStore | None = None,
    ) -> None:
        self._mode = mode
        self._on_request = on_request
        self._callback = callback
        self._store = store
        self._locked = False
        # Interactive callbacks share one terminal; never run two at once.
        self._callback_lock = asyncio.Lock()
        self._pending: dict[str, tuple[PermissionRequest, asyncio.Future[bool]]] = {}
        self._remember: set[str] = set()
        self._allowed_tools: set[str] = store.load() if store else set()

    @property
    def mode(self) -> PermissionMode:
        return self._mode

    @property
    def locked(self) -> bool:
        return self._locked

    @property
    def allowed_tools(self) -> frozenset[str]:
        return frozenset(self._allowed_tools)

    def set_on_request(self, publisher: RequestPublisher | None) -> None:
        self._on_request = publisher

    def set_mode(self, mode: PermissionMode) -> None:
        if self._locked:
            raise PermissionModeLockedError(
                f"Cannot switch to {mode.value} while a turn is running"
            )
        if mode != self._mode:
            logger.info("Permission mode %s -> %s", self._mode.value, mode.value)
        self._mode = mode

    @contextmanager
    def turn(self) -> Iterator[PermissionGate]:
        """Hold the mode fixed for the duration of a turn."""
        self._locked = True
        try:
            yield self
        finally:
            self._locked = False

    def pending(self) -> list[PermissionRequest]:
        return [request for request, _ in self._pending.values()]

    def needs_approval(self, capability: Capability) -> bool:
        """True when ``authorize`` would have to ask someone."""
        if not capability.side_effecting:
            return False
        if self._mode == PermissionMode.BYPASS:
            return False
        if self._mode == PermissionMode.PLAN_ONLY:
            return False
        if (
            self._mode == PermissionMode.AUTO_ACCEPT_EDITS
            and capability.side_effect == SideEffect.FILE_WRITE
        ):
            return False
        return capability.name not in self._allowed_tools

    async def authorize(
        self,
        capability: Capability,
        arguments: dict[str, Any],
        cancel: CancellationToken | None = None,
    ) -> None:
        """Return if the action may run. Raise PermissionDeniedError if not."""
        if not capability.side_effecting:
            return
        if self._mode == PermissionMode.PLAN_ONLY:
            logger.info("Plan-only mode: denying %s", capability.name)
            raise PermissionDeniedError(capability.name, "denied (plan-only mode)")
        if not self.needs_approval(capability):
            logger.debug(
                "Permission auto-approved tool=%s mode=%s",
                capability.name, self._mode.value,
            )
            return

        request = PermissionRequest(
            tool_name=capability.name,
            description=capability.describe_action(arguments),
            side_effect=capability.side_effect,
            preview=capability.preview(arguments),
            arguments=dict(arguments),
        )
        approved = await self._ask(request, cancel)
        if not approved:
            raise PermissionDeniedError(capability.name)

    def resolve(self, request_id: str, approved: bool, *, remember: bool = False) -> bool:
        """Resolve a pending request. Returns False if unknown or already resolved."""
        entry = self._pending.get(request_id)
        if entry is None:
            logger.debug("resolve: no pending request %s", request_id[:8])
            return False
        request, future = entry
        if not request.resolve(approved):
            return False
        if approved and remember:
            self._remember.add(request.tool_name)
        if not future.done():
            future.set_result(approved)
        logger.info(
            "Permission request resolved request_id=%s tool=%s result=%s",
            request_id[:8], request.tool_name, request.resolution.value,
        )
        return True

    async def _ask(
        self,
        request: PermissionRequest,
        cancel: CancellationToken | None,
    ) -> bool:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[bool] = loop.create_future()
        self._pending[request.request_id] = (request, future)
        logger.info(
            "Permission request queued request_id=%s tool=%s",
            request.request_id[:8], request.tool_name,
        )
        try:
            if self._on_request is not None:
                await self._on_request(request)
            if self._callback is not None and not request.is_resolved:
                await self._consult_callback(request, cancel)
            if cancel is not None:
                approved = await cancel.race(asyncio.shield(future))
            else:
                approved = await future
        except BaseException:
            request.resolve(False)
            raise
        finally:
            self._pending.pop(request.request_id, None)

        if approved and request.tool_name in self._remember:
            self._remember_tool(request.tool_name)
        return approved

    async def _consult_callback(
        self,
        request: PermissionRequest,
        cancel: CancellationToken | None,
    ) -> None:
        """Ask the callback about *request*, one request at a time."""
        if cancel is not None:
            cancel.raise_if_cancelled()
            await cancel.race(self._callback_lock.acquire())
        else:
            await self._callback_lock.acquire()
        try:
            if request.is_resolved:
                return
            if request.tool_name in self._allowed_tools or request.tool_name in self._remember:
                logger.debug(
                    "Permission granted by earlier allow_always tool=%s",
                    request.tool_name,
                )
                self.resolve(request.request_id, True)
                return
            decision = await self._run_callback(request, cancel)
            self.resolve(
                request.request_id,
                decision in ("allow", "allow_always"),
                remember=decision == "allow_always",
            )
        finally:
            self._callback_lock.release()

    async def _run_callback(
        self,
        request: PermissionRequest,
        cancel: CancellationToken | None,
    ) -> str:
        call = self._callback(request)
        try:
            if cancel is not None:
                result = await cancel.race(call)
            else:
                result = await call
        except TurnCancelled:
            raise
        except Exception:
            logger.warning(
                "Permission callback error for %s, denying",
                request.tool_name, exc_info=True,
            )
            return "deny"
        logger.info(
            "Permission callback result tool=%s result=%s",
            request.tool_name, result,
        )
        return result

    def _remember_tool(self, tool_name: str) -> None:
        self._remember.discard(tool_name)
        if tool_name in self._allowed_tools:
            return
        self._allowed_tools.add(tool_name)
        if self._store is not None:
            self._store.add_project(tool_name)
        logger.info("Tool %s allowed for the rest of the session", tool_name)
