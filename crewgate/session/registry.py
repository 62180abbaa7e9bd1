"""Session registry: per-conversation turns, queueing and persistence."""

import asyncio
import base64
import logging
import os
from contextlib import aclosing
from datetime import datetime
from pathlib import Path
from typing import Optional

from crewgate.config import Config
from crewgate.constants import IMAGE_MIME_TYPES
from crewgate.conversation import Conversation
from crewgate.errors import (
    AlreadyRunningError,
    PathNotAllowedError,
    SessionNotFoundError,
    TurnAborted,
)
from crewgate.events import EventBus
from crewgate.intent import EditScope
from crewgate.models import (
    ErrorEvent,
    ImageAttachment,
    Message,
    MessageEvent,
    QueuedPrompt,
    QueueErrorEvent,
    QueueUpdatedEvent,
    SessionMetadata,
    StartedEvent,
    TextDeltaEvent,
    ToolCallEvent,
    TurnCompleteEvent,
    generate_id,
)
from crewgate.providers.base import ExecuteOptions, Prompt
from crewgate.providers.routing import ProviderFactory
from crewgate.session.store import SessionStore, validate_session_id
from crewgate.system_prompt import SystemPromptBuilder
from crewgate.tools.sandbox import ToolSandbox
from crewgate.utils.paths import PathGuard, normalize

logger = logging.getLogger(__name__)

_NOT_FOUND = {"success": False, "error": "Session not found"}


class SessionRegistry:
    """Owns every live conversation and runs their turns.

    At most one turn is active per conversation; turns in different
    conversations run concurrently on the same event loop. Queued prompts
    are drained automatically once a conversation goes idle.
    """

    def __init__(
        self,
        config: Config,
        store: SessionStore,
        events: EventBus,
        guard: PathGuard,
        sandbox: ToolSandbox,
        provider_factory: ProviderFactory,
    ):
        self.config = config
        self.store = store
        self.events = events
        self.guard = guard
        self.sandbox = sandbox
        self.provider_factory = provider_factory
        self._conversations: dict[str, Conversation] = {}
        self._drain_tasks: set[asyncio.Task] = set()
        self.store.initialize()

    @classmethod
    def from_config(cls, config: Config, events: Optional[EventBus] = None) -> "SessionRegistry":
        """Wire a registry and its collaborators from configuration."""
        guard = PathGuard(config.allowed_roots, config.data_dir)
        return cls(
            config=config,
            store=SessionStore(config.data_dir),
            events=events or EventBus(),
            guard=guard,
            sandbox=ToolSandbox(guard, config),
            provider_factory=ProviderFactory(config.provider_configs()),
        )

    def get(self, session_id: str) -> Optional[Conversation]:
        return self._conversations.get(session_id)

    # Conversation lifecycle

    async def start(self, session_id: str, working_directory: Optional[str] = None) -> dict:
        """Start or resume a conversation. Idempotent.

        Raises:
            ValueError: If the session id is malformed
            PathNotAllowedError: If the working directory is outside the allowed roots
        """
        validate_session_id(session_id)
        if session_id not in self._conversations:
            metadata = self.store.get_metadata(session_id)
            directory = working_directory or (metadata.working_directory if metadata else None) or os.getcwd()
            resolved = self.guard.validate(normalize(directory))
            if metadata is None:
                metadata = self.store.put_metadata(
                    SessionMetadata(id=session_id, name=session_id, working_directory=resolved)
                )

            self._conversations[session_id] = Conversation(
                session_id=session_id,
                working_directory=resolved,
                messages=self.store.load_messages(session_id),
                model=metadata.model,
                continuation_token=metadata.continuation_token,
                queue=self.store.load_queue(session_id),
            )
            logger.debug("Started session %s in %s", session_id, resolved)

        conversation = self._conversations[session_id]
        return {"success": True, "messages": conversation.messages, "session_id": session_id}

    async def send(
        self,
        session_id: str,
        message: str,
        images: Optional[list[str]] = None,
        model: Optional[str] = None,
        working_directory: Optional[str] = None,
    ) -> dict:
        """Run one turn and relay its events.

        Returns:
            ``{"success": True, "message": <assistant message>}`` on completion,
            ``{"success": True, "aborted": True}`` if stopped

        Raises:
            SessionNotFoundError: If the session was never started
            AlreadyRunningError: If a turn is already active
            Exception: Any fatal turn error, after it is recorded and emitted
        """
        conversation = self._conversations.get(session_id)
        if conversation is None:
            raise SessionNotFoundError(session_id)
        if conversation.is_running:
            raise AlreadyRunningError(session_id)

        if model:
            conversation.model = model
            self.store.update_metadata(session_id, model=model)

        attachments = self._load_images(images or [], conversation.working_directory)
        history = conversation.history()
        user_message = Message(role="user", content=message, images=attachments or None)

        conversation.add_message(user_message)
        token = conversation.begin_turn()
        self.events.emit(session_id, StartedEvent())
        self.events.emit(session_id, MessageEvent(message=user_message))
        self.store.save_messages(session_id, conversation.messages)

        assistant: Optional[Message] = None
        try:
            cwd = self.guard.validate(working_directory or conversation.working_directory)
            effective_model = model or conversation.model or self.config.default_model
            provider = self.provider_factory.get_provider_for_model(effective_model)
            scope = EditScope(cwd, self.guard, enforce=self.config.enforce_edit_scope)
            options = ExecuteOptions(
                prompt=self._build_prompt(message, attachments),
                model=effective_model,
                cwd=cwd,
                system_prompt=SystemPromptBuilder(cwd, self.config.auto_load_context).build(),
                max_turns=self.config.max_turns,
                allowed_tools=list(self.config.allowed_tools),
                cancel=token,
                conversation_history=history,
                continuation_token=conversation.continuation_token,
                sandbox=self.sandbox,
            )
            logger.info("Session %s: turn on %s (%s)", session_id, effective_model, provider.name)

            async with aclosing(provider.execute_query(options)) as stream:
                async for event in stream:
                    token.raise_if_cancelled()
                    self._capture_continuation(conversation, event.continuation_token)

                    if isinstance(event, TextDeltaEvent):
                        if assistant is None:
                            assistant = Message(role="assistant", content=event.content)
                            conversation.add_message(assistant)
                        else:
                            assistant.content = event.content
                        scope.observe(event.content)
                        event = event.model_copy(update={"message_id": assistant.id})
                    elif isinstance(event, ToolCallEvent):
                        scope.enforce(event.name, event.input)
                    elif isinstance(event, TurnCompleteEvent):
                        if event.content:
                            if assistant is None:
                                assistant = Message(role="assistant", content=event.content)
                                conversation.add_message(assistant)
                            else:
                                assistant.content = event.content
                        event = event.model_copy(
                            update={"message_id": assistant.id if assistant else None}
                        )

                    self.events.emit(session_id, event)

            token.raise_if_cancelled()
            scope.verify()
            self.store.save_messages(session_id, conversation.messages)
            self._schedule_drain(session_id)
            return {"success": True, "message": assistant}

        except TurnAborted:
            logger.debug("Turn aborted for session %s", session_id)
            self.store.save_messages(session_id, conversation.messages)
            return {"success": True, "aborted": True}

        except Exception as e:
            logger.exception("Turn failed for session %s", session_id)
            error_message = Message(role="assistant", content=f"Error: {e}", is_error=True)
            conversation.add_message(error_message)
            self.store.save_messages(session_id, conversation.messages)
            self.events.emit(session_id, ErrorEvent(error=str(e), message=error_message))
            self._schedule_drain(session_id)
            raise

        finally:
            conversation.end_turn(token)

    async def stop(self, session_id: str) -> dict:
        """Cancel the active turn, if any, and mark the conversation idle."""
        conversation = self._conversations.get(session_id)
        if conversation is None:
            return dict(_NOT_FOUND)

        token = conversation.cancel
        if token is not None:
            token.cancel()
            conversation.end_turn(token)
        return {"success": True}

    def get_history(self, session_id: str) -> dict:
        conversation = self._conversations.get(session_id)
        if conversation is None:
            return dict(_NOT_FOUND)
        return {
            "success": True,
            "messages": conversation.messages,
            "is_running": conversation.is_running,
        }

    async def clear_session(self, session_id: str) -> dict:
        conversation = self._conversations.get(session_id)
        if conversation is not None:
            await self.stop(session_id)
            conversation.clear()
            self.store.save_messages(session_id, [])
        return {"success": True}

    # Session metadata

    async def list_sessions(self, include_archived: bool = False) -> dict:
        sessions = list(self.store.load_metadata().values())
        if not include_archived:
            sessions = [session for session in sessions if not session.archived]
        sessions.sort(key=lambda session: _parse_time(session.updated_at), reverse=True)
        return {"success": True, "sessions": sessions}

    async def create_session(
        self,
        name: str,
        project_path: Optional[str] = None,
        working_directory: Optional[str] = None,
        model: Optional[str] = None,
    ) -> dict:
        """Register a new session.

        Returns:
            ``{"success": True, "session": <metadata>}``, or a failure result
            if the working directory or project path is not allowed
        """
        try:
            directory = self.guard.validate(working_directory or project_path or os.getcwd())
            if project_path:
                self.guard.validate(project_path)
        except PathNotAllowedError as e:
            logger.warning("Rejected session %r: %s", name, e)
            return {"success": False, "error": str(e)}

        entry = SessionMetadata(
            id=generate_id("session"),
            name=name,
            project_path=project_path,
            working_directory=directory,
            model=model,
        )
        return {"success": True, "session": self.store.put_metadata(entry)}

    async def update_session(self, session_id: str, **updates) -> dict:
        entry = self.store.update_metadata(session_id, **updates)
        if entry is None:
            return dict(_NOT_FOUND)
        return {"success": True, "session": entry}

    async def set_session_model(self, session_id: str, model: str) -> dict:
        conversation = self._conversations.get(session_id)
        if conversation is None:
            return dict(_NOT_FOUND)
        conversation.model = model
        self.store.update_metadata(session_id, model=model)
        return {"success": True}

    async def archive_session(self, session_id: str) -> dict:
        return self._set_archived(session_id, True)

    async def unarchive_session(self, session_id: str) -> dict:
        return self._set_archived(session_id, False)

    async def delete_session(self, session_id: str) -> dict:
        if not self.store.delete(session_id):
            return dict(_NOT_FOUND)
        if session_id in self._conversations:
            await self.stop(session_id)
            del self._conversations[session_id]
        return {"success": True}

    def _set_archived(self, session_id: str, archived: bool) -> dict:
        if self.store.update_metadata(session_id, archived=archived) is None:
            return dict(_NOT_FOUND)
        return {"success": True}

    # Prompt queue

    async def enqueue(
        self,
        session_id: str,
        message: str,
        image_paths: Optional[list[str]] = None,
        model: Optional[str] = None,
    ) -> dict:
        conversation = self._conversations.get(session_id)
        if conversation is None:
            return dict(_NOT_FOUND)

        prompt = QueuedPrompt(message=message, image_paths=image_paths, model=model)
        conversation.queue.append(prompt)
        self._queue_changed(conversation)
        return {"success": True, "queued_prompt": prompt}

    def get_queue(self, session_id: str) -> dict:
        conversation = self._conversations.get(session_id)
        if conversation is None:
            return dict(_NOT_FOUND)
        return {"success": True, "queue": list(conversation.queue)}

    async def remove_from_queue(self, session_id: str, prompt_id: str) -> dict:
        conversation = self._conversations.get(session_id)
        if conversation is None:
            return dict(_NOT_FOUND)

        for index, prompt in enumerate(conversation.queue):
            if prompt.id == prompt_id:
                del conversation.queue[index]
                self._queue_changed(conversation)
                return {"success": True}
        return {"success": False, "error": "Prompt not found in queue"}

    async def clear_queue(self, session_id: str) -> dict:
        conversation = self._conversations.get(session_id)
        if conversation is None:
            return dict(_NOT_FOUND)

        conversation.queue = []
        self._queue_changed(conversation)
        return {"success": True}

    async def process_next_in_queue(self, session_id: str) -> None:
        """Run the head of the queue if the conversation is idle."""
        conversation = self._conversations.get(session_id)
        if conversation is None or not conversation.queue or conversation.is_running:
            return

        prompt = conversation.queue.pop(0)
        self._queue_changed(conversation)

        try:
            await self.send(
                session_id,
                prompt.message,
                images=prompt.image_paths,
                model=prompt.model,
            )
        except Exception as e:
            logger.error("Failed to process queued prompt %s: %s", prompt.id, e)
            self.events.emit(session_id, QueueErrorEvent(error=str(e), prompt_id=prompt.id))

    async def wait_for_queue(self) -> None:
        """Wait until no drain is pending, including drains scheduled meanwhile."""
        while self._drain_tasks:
            await asyncio.gather(*list(self._drain_tasks), return_exceptions=True)

    # Internals

    def _queue_changed(self, conversation: Conversation) -> None:
        self.store.save_queue(conversation.session_id, conversation.queue)
        self.events.emit(conversation.session_id, QueueUpdatedEvent(queue=list(conversation.queue)))

    def _schedule_drain(self, session_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self.process_next_in_queue(session_id))
        self._drain_tasks.add(task)
        task.add_done_callback(self._drain_tasks.discard)

    def _capture_continuation(self, conversation: Conversation, token: Optional[str]) -> None:
        if token and token != conversation.continuation_token:
            conversation.continuation_token = token
            self.store.update_metadata(conversation.session_id, continuation_token=token)

    def _load_images(self, image_paths: list[str], cwd: str) -> list[ImageAttachment]:
        attachments = []
        for image_path in image_paths:
            try:
                resolved = Path(self.guard.resolve(cwd, image_path))
                data = base64.b64encode(resolved.read_bytes()).decode("ascii")
            except (OSError, PathNotAllowedError) as e:
                logger.error("Failed to load image %s: %s", image_path, e)
                continue
            attachments.append(
                ImageAttachment(
                    data=data,
                    mime_type=IMAGE_MIME_TYPES.get(resolved.suffix.lower(), "image/png"),
                    filename=resolved.name,
                )
            )
        return attachments

    def _build_prompt(self, message: str, attachments: list[ImageAttachment]) -> Prompt:
        if not attachments:
            return message

        names = "\n".join(f"- {image.filename}" for image in attachments)
        blocks: list[dict] = [{"type": "text", "text": f"{message}\n\nAttached images:\n{names}"}]
        for image in attachments:
            blocks.append({
                "type": "image",
                "source": {"type": "base64", "media_type": image.mime_type, "data": image.data},
            })
        return blocks


def _parse_time(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return datetime.min
