"""
Conversation Flow Engine for the guided intake chat.

Walks a visitor through the step table one submission at a time:
validate the input, merge the collected field, resolve the next step,
persist, and hand off to the completion handler at a confirmation step.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from typing import Any, Dict, List, MutableMapping, Optional, Tuple

from .completion import CompletionHandler
from .definitions import MAIN_MENU_STEP_ID, STEP_TABLE, WELCOME_STEP_ID, flow_progress
from .errors import LeadCreationError, SessionNotFoundError, StaleTransitionError
from .resolver import TransitionResolver
from .session import ChatMessage, ConversationSession, MessageRole, PendingMessage
from .steps import TERMINAL_STEP_ID, CollectedData, StepDefinition, StepKind, StepTable
from .stores import LeadService, MessageLog, SessionStore
from .validator import validate

logger = logging.getLogger(__name__)


@dataclass
class SessionView:
    """A session together with its transcript and the step awaiting input."""
    session: ConversationSession
    transcript: List[ChatMessage]
    current_step: StepDefinition
    resumed: bool = False

    @property
    def progress(self) -> int:
        return flow_progress(self.session.collected_data, self.session.current_step_id)


@dataclass
class SubmitResult:
    accepted: bool
    assistant_messages: List[str] = field(default_factory=list)
    new_step_id: Optional[str] = None
    done: bool = False
    stale: bool = False
    progress: int = 0
    lead_id: Optional[str] = None
    lead_priority: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": self.accepted,
            "assistant_messages": self.assistant_messages,
            "new_step_id": self.new_step_id,
            "done": self.done,
            "stale": self.stale,
            "progress": self.progress,
            "lead_id": self.lead_id,
            "lead_priority": self.lead_priority,
        }


class ConversationController:
    """
    Drives guided intake sessions.

    Every accepted transition is persisted before it is acknowledged.
    Submissions for one session are serialized with a per-session lock, and
    every submission names the step it answers: the store's compare-and-set
    on that step rejects anything computed against a step the session has
    already left, so a replayed request is reported stale, never re-applied.
    Opening a chat is serialized per visitor token the same way.
    """

    def __init__(
        self,
        session_store: SessionStore,
        message_log: MessageLog,
        completion: CompletionHandler,
        table: StepTable = STEP_TABLE,
        lead_service: Optional[LeadService] = None,
        locks: Optional[MutableMapping[str, asyncio.Lock]] = None,
    ):
        self.session_store = session_store
        self.message_log = message_log
        self.completion = completion
        self.table = table
        self.resolver = TransitionResolver(table)
        self.lead_service = lead_service or completion.lead_service
        # Shared across request-scoped controllers; an entry lives only while a request holds it
        self.locks: MutableMapping[str, asyncio.Lock] = (
            locks if locks is not None else weakref.WeakValueDictionary()
        )

    # ── Public operations ────────────────────────────────────────

    async def start(self, visitor_token: str, metadata: Optional[Dict[str, Any]] = None) -> SessionView:
        """
        Open the chat for a visitor.

        An existing active session is returned as-is (no new messages). A
        session that was created but never greeted is greeted now.
        """
        async with self._lock_for(f"visitor:{visitor_token}"):
            return await self._open(visitor_token, metadata)

    async def get_state(self, session_id: str) -> SessionView:
        session = await self._load(session_id)
        transcript = await self.message_log.list(session.id)
        return SessionView(
            session=session,
            transcript=transcript,
            current_step=self.table.step_by_id(session.current_step_id),
            resumed=True,
        )

    async def submit(self, session_id: str, raw_input: str, expected_step_id: str) -> SubmitResult:
        """
        Apply one user submission to the step named by expected_step_id.

        Invalid input and stale submissions come back as accepted=False with
        no state change. PersistenceError and LeadCreationError propagate.
        """
        # Unknown ids fail here, before a lock is registered for them.
        await self._load(session_id)
        async with self._lock_for(session_id):
            return await self._apply(session_id, raw_input, expected_step_id)

    # ── Internals ────────────────────────────────────────────────

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self.locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self.locks[key] = lock
        return lock

    async def _open(self, visitor_token: str, metadata: Optional[Dict[str, Any]]) -> SessionView:
        existing = await self.session_store.find_active_by_token(visitor_token)
        if existing and existing.current_step_id != WELCOME_STEP_ID:
            transcript = await self.message_log.list(existing.id)
            logger.info(f"Resumed chat session {existing.id} at step {existing.current_step_id}")
            return SessionView(
                session=existing,
                transcript=transcript,
                current_step=self.table.step_by_id(existing.current_step_id),
                resumed=True,
            )

        session = existing or await self.session_store.create(visitor_token, metadata)
        if not existing:
            logger.info(f"Chat session {session.id} created for visitor {visitor_token}")

        async with self._lock_for(session.id):
            session = await self._greet(session)
        transcript = await self.message_log.list(session.id)
        return SessionView(
            session=session,
            transcript=transcript,
            current_step=self.table.step_by_id(session.current_step_id),
        )

    async def _apply(self, session_id: str, raw_input: str, expected_step_id: str) -> SubmitResult:
        session = await self._load(session_id)

        if not session.is_active:
            logger.warning(f"Submission to {session.status.value} session {session_id} rejected")
            return self._stale(session)
        if expected_step_id != session.current_step_id:
            logger.warning(
                f"Stale submission for session {session_id}: "
                f"expected {expected_step_id}, at {session.current_step_id}"
            )
            return self._stale(session)

        step = self.table.step_by_id(session.current_step_id)

        if step.is_confirmation:
            # Earlier lead creation failed; this submission is the retry.
            return await self._finish(session, [])

        check = validate(step, raw_input)
        if not check.valid:
            return SubmitResult(
                accepted=False,
                assistant_messages=[check.message],
                new_step_id=step.id,
                progress=flow_progress(session.collected_data, step.id),
            )

        value = check.normalized_value
        collected = dict(session.collected_data)
        if step.collects_field:
            collected[step.collects_field] = value

        pending = [PendingMessage(MessageRole.USER, step.option_label(value) or value, step.id)]
        next_id = self.resolver.resolve_next(step, value, collected)
        new_step, prompts = self._enter(next_id, collected)
        pending.extend(prompts)

        try:
            session = await self.session_store.update(
                session.id,
                {"current_step_id": new_step.id, "collected_data": collected},
                expected_step_id=step.id,
            )
        except StaleTransitionError as e:
            logger.warning(f"Lost compare-and-set for session {session_id}: {e}")
            return self._stale(await self._load(session_id))

        await self._log(session.id, pending)
        assistant_messages = [m.content for m in prompts]
        logger.debug(f"Session {session.id}: {step.id} -> {new_step.id}")

        if new_step.is_confirmation:
            return await self._finish(session, assistant_messages)

        return SubmitResult(
            accepted=True,
            assistant_messages=assistant_messages,
            new_step_id=new_step.id,
            progress=flow_progress(collected, new_step.id),
        )

    async def _load(self, session_id: str) -> ConversationSession:
        session = await self.session_store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def _greet(self, session: ConversationSession) -> ConversationSession:
        collected: CollectedData = dict(session.collected_data)
        greeting = await self._returning_visitor_greeting(session.visitor_token, collected)

        if greeting:
            menu = self.table.step_by_id(MAIN_MENU_STEP_ID)
            new_step = menu
            pending = [
                PendingMessage(MessageRole.ASSISTANT, greeting, WELCOME_STEP_ID),
                PendingMessage(MessageRole.ASSISTANT, menu.prompt, menu.id),
            ]
        else:
            new_step, pending = self._enter(WELCOME_STEP_ID, collected)

        session = await self.session_store.update(
            session.id,
            {"current_step_id": new_step.id, "collected_data": collected},
            expected_step_id=WELCOME_STEP_ID,
        )
        await self._log(session.id, pending)
        return session

    async def _returning_visitor_greeting(self, visitor_token: str, collected: CollectedData) -> Optional[str]:
        previous = await self.session_store.find_last_completed_by_token(visitor_token)
        if not previous or not previous.lead_id:
            return None
        lead = await self.lead_service.get(previous.lead_id)
        name = (lead or {}).get("name") or ""
        if not name or name == "Website Visitor":
            return None
        collected["name"] = name
        first_name = name.split(" ")[0]
        logger.info(f"Returning visitor {visitor_token} (lead {previous.lead_id})")
        return f"Welcome back, {first_name}! How can I help you today?"

    def _enter(self, step_id: str, collected: CollectedData) -> Tuple[StepDefinition, List[PendingMessage]]:
        """
        Enter a step, emitting its prompt, and pass through message steps.

        Returns the step that now awaits input plus the prompts emitted on
        the way there.
        """
        step = self.table.step_by_id(step_id)
        prompts: List[PendingMessage] = []
        for _ in range(len(self.table)):
            if step.prompt:
                prompts.append(PendingMessage(MessageRole.ASSISTANT, step.prompt, step.id))
            if step.kind != StepKind.MESSAGE or step.is_terminal:
                return step, prompts
            step = self.table.step_by_id(self.resolver.resolve_next(step, "", collected))
        raise RuntimeError(f"Message steps loop starting at {step_id!r}")

    async def _log(self, session_id: str, pending: List[PendingMessage]) -> None:
        for msg in pending:
            await self.message_log.append(session_id, msg.role, msg.content, msg.step_id)

    async def _finish(self, session: ConversationSession, assistant_messages: List[str]) -> SubmitResult:
        try:
            result = await self.completion.complete(session)
        except LeadCreationError:
            await self.message_log.append(
                session.id, MessageRole.ASSISTANT, LeadCreationError.user_message, session.current_step_id
            )
            raise

        terminal = self.table.step_by_id(TERMINAL_STEP_ID)
        await self.message_log.append(session.id, MessageRole.ASSISTANT, terminal.prompt, terminal.id)
        logger.info(f"Chat session {session.id} completed with lead {result.lead_id}")
        return SubmitResult(
            accepted=True,
            assistant_messages=assistant_messages + [terminal.prompt],
            new_step_id=terminal.id,
            done=True,
            progress=100,
            lead_id=result.lead_id,
            lead_priority=result.lead_score.priority.value,
        )

    def _stale(self, session: ConversationSession) -> SubmitResult:
        return SubmitResult(
            accepted=False,
            new_step_id=session.current_step_id,
            done=not session.is_active,
            stale=True,
            progress=flow_progress(session.collected_data, session.current_step_id),
        )
