"""Structured outcome reported for every handled event."""

from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import Enum


class Visibility(str, Enum):
    VISIBLE = "visible"
    HIDDEN = "hidden"


@dataclass(frozen=True)
class HandlerStatus:
    """Outcome of evaluating an event.

    ``code`` is 0 when the event was handled (whether or not anything was
    merged) and 1 for failures that need user action. ``reason`` is Markdown
    suitable for posting to a notification channel.
    """

    code: int
    reason: str
    visibility: Visibility = Visibility.VISIBLE

    @property
    def is_hidden(self) -> bool:
        return self.visibility == Visibility.HIDDEN

    def hidden(self) -> "HandlerStatus":
        return replace(self, visibility=Visibility.HIDDEN)

    def to_dict(self) -> dict[str, int | str]:
        return {"code": self.code, "reason": self.reason, "visibility": self.visibility.value}


def success(reason: str) -> HandlerStatus:
    return HandlerStatus(code=0, reason=reason)


def failure(reason: str) -> HandlerStatus:
    return HandlerStatus(code=1, reason=reason)


def combine(results: Iterable[HandlerStatus]) -> HandlerStatus:
    """Fold the results of several pull requests into one status.

    The combined code is 1 if any result failed. Reasons are joined by
    newlines and the combined status is hidden only if every result is.
    """
    collected = list(results)
    code = 1 if any(result.code != 0 for result in collected) else 0
    reason = "\n".join(result.reason for result in collected if result.reason)
    hidden = all(result.is_hidden for result in collected)
    return HandlerStatus(
        code=code,
        reason=reason,
        visibility=Visibility.HIDDEN if hidden else Visibility.VISIBLE,
    )
