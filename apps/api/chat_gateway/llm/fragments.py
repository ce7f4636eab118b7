from dataclasses import dataclass
from typing import Optional, Union

ERROR_PREFIX = "[error] "


@dataclass(frozen=True)
class ChatInput:
    user_prompt: str
    system: Optional[str] = None

    @property
    def system_text(self) -> str:
        return (self.system or "").strip()

    def is_blank(self) -> bool:
        return not (self.user_prompt or "").strip()


@dataclass(frozen=True)
class CompletionResult:
    text: str


@dataclass(frozen=True)
class Message:
    text: str


@dataclass(frozen=True)
class Comment:
    text: str = "ping"


@dataclass(frozen=True)
class Done:
    pass


OutboundFragment = Union[Message, Comment, Done]

DONE = Done()


def error_message(ex: BaseException | str) -> Message:
    if isinstance(ex, BaseException):
        detail = str(ex) or ex.__class__.__name__
    else:
        detail = ex
    return Message(ERROR_PREFIX + detail)
