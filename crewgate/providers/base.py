"""Provider interface shared by every backend adapter."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional, Union

from crewgate.config import ProviderConfig
from crewgate.constants import DEFAULT_MAX_TURNS
from crewgate.models import InstallationStatus, Message, ModelDefinition, StreamEvent
from crewgate.tools.sandbox import ToolSandbox
from crewgate.utils.cancel import CancellationToken

# Either plain text or a list of content blocks:
#   {"type": "text", "text": ...}
#   {"type": "image", "source": {"type": "base64", "media_type": ..., "data": ...}}
Prompt = Union[str, list[dict]]


@dataclass
class ExecuteOptions:
    """Everything one turn needs, independent of backend."""

    prompt: Prompt
    model: str
    cwd: str
    system_prompt: Optional[str] = None
    max_turns: int = DEFAULT_MAX_TURNS
    allowed_tools: Optional[list[str]] = None
    cancel: CancellationToken = field(default_factory=CancellationToken)
    conversation_history: list[Message] = field(default_factory=list)
    continuation_token: Optional[str] = None
    sandbox: Optional[ToolSandbox] = None


class BaseProvider(ABC):
    """A backend family that turns a prompt into canonical stream events."""

    name: str = "base"

    def __init__(self, config: Optional[ProviderConfig] = None):
        self.config = config or ProviderConfig()

    @abstractmethod
    def execute_query(self, options: ExecuteOptions) -> AsyncIterator[StreamEvent]:
        """Run one turn, yielding canonical events.

        The final event of a successful turn is ``turn-complete``. Failures
        raise instead of yielding ``error``; the registry owns error events.
        """

    @abstractmethod
    async def detect_installation(self) -> InstallationStatus:
        """Report whether this backend can be used here."""

    @abstractmethod
    def available_models(self) -> list[ModelDefinition]:
        """Catalog entries this backend serves."""

