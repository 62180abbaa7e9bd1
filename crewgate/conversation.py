"""In-memory conversation state."""

from dataclasses import dataclass, field
from typing import Optional

from crewgate.models import Message, QueuedPrompt
from crewgate.utils.cancel import CancellationToken


@dataclass
class Conversation:
    """One conversation: transcript, follow-up queue and the active turn's handle.

    ``cancel`` is non-None exactly while a turn is running; it identifies
    that turn, so late bookkeeping from a stopped turn can recognise that it
    no longer owns the conversation.
    """

    session_id: str
    working_directory: str
    messages: list[Message] = field(default_factory=list)
    model: Optional[str] = None
    continuation_token: Optional[str] = None
    queue: list[QueuedPrompt] = field(default_factory=list)
    cancel: Optional[CancellationToken] = None

    @property
    def is_running(self) -> bool:
        return self.cancel is not None

    def begin_turn(self) -> CancellationToken:
        """Mark Active with a fresh token."""
        self.cancel = CancellationToken()
        return self.cancel

    def end_turn(self, token: CancellationToken) -> bool:
        """Mark Idle if ``token`` still owns the conversation.

        Returns:
            True if this call changed the state
        """
        if self.cancel is not token:
            return False
        self.cancel = None
        return True

    def add_message(self, message: Message) -> None:
        self.messages.append(message)

    def history(self) -> list[Message]:
        """Messages suitable as provider history (error messages left out)."""
        return [message for message in self.messages if not message.is_error]

    def clear(self) -> None:
        self.messages = []
