"""
Streaming chat session for the active organization.

One turn at a time:
1. Submitting: the user message is stored before anything is streamed
2. Streaming: the stored transcript plus the new message is sent to the
   organization's completion endpoint; deltas accumulate into live text
3. Reconciling: the full reply is stored as one assistant message and the
   transcript is reloaded from the store

A failed turn stores nothing from the reply. A tenant switch cancels the
in-flight turn and any late result for the old tenant is dropped.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Union

import structlog

from saas_console_shared.schemas.chat import AIEndpointConfig, ChatMessage
from saas_console_shared.schemas.common import MessageRole
from saas_console_shared.schemas.organizations import TenantContext

from .completion import CompletionClient
from .entitlements import Entitlements
from .errors import (
    AuthRequired,
    ConfigDisabled,
    ConfigMissing,
    ConsoleError,
    EntitlementRequired,
    TransportError,
)
from .metrics import MetricsCollector
from .platform import PlatformClient
from .tenancy import TenantResolver

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------

class DisabledReason(str, Enum):
    CONFIG_MISSING = "config_missing"
    CONFIG_DISABLED = "config_disabled"
    ENTITLEMENT_REQUIRED = "entitlement_required"


_DISABLED_MESSAGES = {
    DisabledReason.CONFIG_MISSING: (
        "AI chat is not set up for your organization. "
        "Please contact your administrator."
    ),
    DisabledReason.CONFIG_DISABLED: (
        "AI features are not enabled for your organization. "
        "Please contact your administrator to enable AI chat."
    ),
    DisabledReason.ENTITLEMENT_REQUIRED: (
        "An active subscription is required to use AI chat."
    ),
}

_DISABLED_ERRORS: dict[DisabledReason, type[ConsoleError]] = {
    DisabledReason.CONFIG_MISSING: ConfigMissing,
    DisabledReason.CONFIG_DISABLED: ConfigDisabled,
    DisabledReason.ENTITLEMENT_REQUIRED: EntitlementRequired,
}


@dataclass(frozen=True)
class Idle:
    """No tenant yet."""


@dataclass(frozen=True)
class AwaitingConfig:
    organization_id: str


@dataclass(frozen=True)
class Ready:
    """Configuration loaded; input accepted."""


@dataclass(frozen=True)
class Disabled:
    reason: DisabledReason

    @property
    def message(self) -> str:
        return _DISABLED_MESSAGES[self.reason]


@dataclass(frozen=True)
class Submitting:
    content: str


@dataclass(frozen=True)
class Streaming:
    partial: str = ""


@dataclass(frozen=True)
class Reconciling:
    content: str


@dataclass(frozen=True)
class Failed:
    """The last load or turn failed; input is accepted again."""
    error: ConsoleError

    @property
    def message(self) -> str:
        return self.error.message


ChatState = Union[
    Idle, AwaitingConfig, Ready, Disabled, Submitting, Streaming, Reconciling, Failed
]

BUSY_STATES = (Submitting, Streaming, Reconciling)

StateObserver = Callable[[ChatState], None]


@dataclass(frozen=True)
class TokenUsage:
    used: int
    limit: int | None = None


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class ChatSession:
    """
    The AI chat panel's state machine, bound to a ``TenantResolver``.

    Observers registered with ``on_update`` see every state, including each
    ``Streaming`` step with the text accumulated so far.
    """

    def __init__(
        self,
        resolver: TenantResolver,
        platform: PlatformClient,
        completions: CompletionClient,
        entitlements: Entitlements,
        metrics: MetricsCollector | None = None,
    ):
        self._resolver = resolver
        self._platform = platform
        self._completions = completions
        self._entitlements = entitlements
        self._metrics = metrics

        self._state: ChatState = Idle()
        self._observers: list[StateObserver] = []
        self._organization_id: str | None = None
        self._config: AIEndpointConfig | None = None
        self._transcript: list[ChatMessage] = []
        self._entitled = False
        self._turn_task: asyncio.Task | None = None
        self._turn_cancelled = False

        resolver.on_change(self._on_tenant_change)

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def transcript(self) -> tuple[ChatMessage, ...]:
        return tuple(self._transcript)

    @property
    def config(self) -> AIEndpointConfig | None:
        return self._config

    @property
    def live_text(self) -> str:
        if isinstance(self._state, Streaming):
            return self._state.partial
        return ""

    @property
    def busy(self) -> bool:
        return isinstance(self._state, BUSY_STATES)

    def on_update(self, observer: StateObserver) -> None:
        self._observers.append(observer)

    def token_usage(self) -> TokenUsage:
        """Displayed token total for the transcript (estimates where the server has no count)."""
        used = sum(message.display_tokens for message in self._transcript)
        limit = self._config.max_total_tokens if self._config else None
        return TokenUsage(used=used, limit=limit)

    # --- Loading ---

    async def _on_tenant_change(self, context: TenantContext | None) -> None:
        await self.cancel_turn()
        if context is None:
            self._clear()
            self._set_state(Idle())
            return
        await self.load()

    async def load(self) -> None:
        """(Re)load configuration, transcript and entitlement for the active tenant."""
        context = self._resolver.context
        if context is None:
            self._clear()
            self._set_state(Idle())
            return

        generation = self._resolver.generation
        organization_id = context.organization_id
        self._set_state(AwaitingConfig(organization_id))

        config: AIEndpointConfig | None
        try:
            try:
                config = await self._platform.get_ai_config(organization_id)
            except ConfigMissing:
                config = None
            transcript = await self._platform.list_messages(organization_id)
            entitled = await self._entitlements.is_entitled(self._resolver.session)
        except ConsoleError as exc:
            if generation != self._resolver.generation:
                return
            log.error("chat.load_failed", organization_id=organization_id, error=exc.message)
            self._set_state(Failed(exc))
            return

        if generation != self._resolver.generation:
            log.debug("chat.load_superseded", organization_id=organization_id)
            return

        self._organization_id = organization_id
        self._config = config
        self._transcript = transcript
        self._gauge("transcript_messages", len(self._transcript))
        self._entitled = entitled
        log.info(
            "chat.loaded",
            organization_id=organization_id,
            messages=len(transcript),
            enabled=bool(config and config.enabled),
            entitled=entitled,
        )
        self._set_state(self._resting_state())

    async def refresh_entitlement(self) -> bool:
        """Re-check the subscription, e.g. after returning from checkout."""
        try:
            self._entitled = await self._entitlements.is_entitled(self._resolver.session)
        except ConsoleError as exc:
            log.warning("chat.entitlement_check_failed", error=exc.message)
            return self._entitled
        if isinstance(self._state, (Ready, Disabled)) or (
            isinstance(self._state, Failed) and self._loaded()
        ):
            self._set_state(self._resting_state())
        return self._entitled

    # --- Turns ---

    async def submit(self, content: str) -> ChatMessage | None:
        """Run one turn and return the stored assistant message.

        Returns None when the input is ignored (blank, a turn already in
        flight, nothing loaded yet), when the turn fails (see ``state``) or
        when it is cancelled. Raises the matching error while chat is
        disabled.
        """
        text = content.strip()
        if not text:
            return None
        if self.busy:
            log.info("chat.submit_ignored", state=type(self._state).__name__)
            return None
        if isinstance(self._state, Failed) and self._loaded():
            # A failed turn does not lift the configuration or entitlement gate
            resting = self._resting_state()
            if isinstance(resting, Disabled):
                self._set_state(resting)
        if isinstance(self._state, Disabled):
            raise _DISABLED_ERRORS[self._state.reason](self._state.message)

        session = self._resolver.session
        context = self._resolver.context
        if session is None:
            raise AuthRequired("Sign in to use AI chat")
        if (
            context is None
            or self._config is None
            or self._organization_id != context.organization_id
            or not isinstance(self._state, (Ready, Failed))
        ):
            log.info("chat.submit_ignored", state=type(self._state).__name__)
            return None

        self._turn_cancelled = False
        task = asyncio.create_task(
            self._run_turn(
                text,
                organization_id=context.organization_id,
                user_id=session.user_id,
                config=self._config,
                generation=self._resolver.generation,
            )
        )
        self._turn_task = task
        try:
            return await task
        except asyncio.CancelledError:
            if self._turn_cancelled and task.cancelled():
                return None
            raise
        finally:
            if self._turn_task is task:
                self._turn_task = None

    async def cancel_turn(self) -> None:
        """Abort the in-flight turn, closing its stream. Nothing from it is stored afterwards."""
        task = self._turn_task
        if task is None or task.done():
            return
        self._turn_cancelled = True
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        if self._metrics:
            self._metrics.inc("chat_turns_cancelled_total")
        log.info("chat.turn_cancelled", organization_id=self._organization_id)
        if self.busy:
            self._set_state(self._resting_state())

    async def _run_turn(
        self,
        text: str,
        *,
        organization_id: str,
        user_id: str,
        config: AIEndpointConfig,
        generation: int,
    ) -> ChatMessage | None:
        def stale() -> bool:
            return generation != self._resolver.generation

        def fail(exc: ConsoleError) -> None:
            if stale():
                return self._discard(organization_id)
            return self._fail(exc, organization_id)

        self._set_state(Submitting(text))
        try:
            stored = await self._platform.append_message(
                organization_id, MessageRole.USER, text, user_id
            )
        except ConsoleError as exc:
            return fail(exc)
        if stale():
            return self._discard(organization_id)
        self._transcript.append(stored)
        self._gauge("transcript_messages", len(self._transcript))

        prompt = [message.as_prompt() for message in self._transcript]
        parts: list[str] = []
        self._set_state(Streaming())
        self._gauge("streams_active", 1)
        try:
            async for delta in self._completions.stream(config, prompt):
                parts.append(delta)
                self._set_state(Streaming("".join(parts)))
        except ConsoleError as exc:
            return fail(exc)
        finally:
            self._gauge("streams_active", 0)
        if stale():
            return self._discard(organization_id)

        reply = "".join(parts)
        if not reply:
            return fail(TransportError("The AI endpoint returned an empty response"))

        self._set_state(Reconciling(reply))
        try:
            assistant = await self._platform.append_message(
                organization_id, MessageRole.ASSISTANT, reply, user_id
            )
            transcript = await self._platform.list_messages(organization_id)
        except ConsoleError as exc:
            return fail(exc)
        if stale():
            self._discard(organization_id)
            return assistant

        self._transcript = transcript
        self._gauge("transcript_messages", len(self._transcript))
        if self._metrics:
            self._metrics.inc("chat_turns_completed_total")
        log.info(
            "chat.turn_completed",
            organization_id=organization_id,
            reply_chars=len(reply),
            messages=len(transcript),
        )
        self._set_state(self._resting_state())
        return assistant

    # --- Internals ---

    def _loaded(self) -> bool:
        context = self._resolver.context
        return (
            self._config is not None
            and context is not None
            and self._organization_id == context.organization_id
        )

    def _resting_state(self) -> ChatState:
        if self._config is None:
            return Disabled(DisabledReason.CONFIG_MISSING)
        if not self._config.enabled:
            return Disabled(DisabledReason.CONFIG_DISABLED)
        if not self._entitled:
            return Disabled(DisabledReason.ENTITLEMENT_REQUIRED)
        return Ready()

    def _fail(self, exc: ConsoleError, organization_id: str) -> None:
        if self._metrics:
            self._metrics.inc("chat_turns_failed_total")
        log.error(
            "chat.turn_failed",
            organization_id=organization_id,
            error_type=type(exc).__name__,
            error=exc.message,
        )
        self._set_state(Failed(exc))
        return None

    def _discard(self, organization_id: str) -> None:
        log.info("chat.turn_discarded", organization_id=organization_id)
        return None

    def _clear(self) -> None:
        self._organization_id = None
        self._config = None
        self._transcript = []
        self._entitled = False
        self._gauge("transcript_messages", 0)

    def _gauge(self, name: str, value: float) -> None:
        if self._metrics:
            self._metrics.set_gauge(name, value)

    def _set_state(self, state: ChatState) -> None:
        self._state = state
        for observer in self._observers:
            try:
                observer(state)
            except Exception:
                log.exception("chat.observer_error", state=type(state).__name__)
