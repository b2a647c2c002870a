"""Action dispatch: handing intents to the collaborators that deliver them.

Delivery (email, chat, assignment, tag writes) is external. stageflow ships
two dispatchers: ``LoggingDispatcher`` writes each intent to the log, and
``RecordingDispatcher`` keeps them in memory for the CLI and tests.
``change_status`` never reaches a dispatcher; the engine applies it.
"""

from __future__ import annotations

import logging
from typing import Protocol

from stageflow.triggers import (
    ActionIntent,
    AddTagAction,
    AssignToAction,
    ChangeStatusAction,
    SendNotificationAction,
    SlackNotifyAction,
)

logger = logging.getLogger(__name__)


class ActionDispatcher(Protocol):
    def send_notification(self, template: str, recipient: str, *, project_id: str) -> None: ...

    def slack_notify(self, channel: str, message: str, *, project_id: str) -> None: ...

    def assign_to(self, user_id: str, *, project_id: str) -> None: ...

    def add_tag(self, tag: str, *, project_id: str) -> None: ...


def dispatch_intent(intent: ActionIntent, dispatcher: ActionDispatcher) -> bool:
    """Route one intent to its dispatcher method.

    Returns False for ``change_status`` intents, which the caller must apply
    through the transition path instead.
    """
    match intent.action:
        case SendNotificationAction(template=template, recipient=recipient):
            dispatcher.send_notification(template, recipient, project_id=intent.project_id)
        case SlackNotifyAction(channel=channel, message=message):
            dispatcher.slack_notify(channel, message, project_id=intent.project_id)
        case AssignToAction(user_id=user_id):
            dispatcher.assign_to(user_id, project_id=intent.project_id)
        case AddTagAction(tag=tag):
            dispatcher.add_tag(tag, project_id=intent.project_id)
        case ChangeStatusAction():
            return False
        case _:
            msg = f"Unhandled action type: {type(intent.action).__name__}"
            raise TypeError(msg)
    return True


class LoggingDispatcher:
    """Writes every intent to the ``stageflow.dispatch`` logger at INFO."""

    def send_notification(self, template: str, recipient: str, *, project_id: str) -> None:
        logger.info("Notify %s with template %s", recipient, template, extra={"project_id": project_id})

    def slack_notify(self, channel: str, message: str, *, project_id: str) -> None:
        logger.info("Slack %s: %s", channel, message, extra={"project_id": project_id})

    def assign_to(self, user_id: str, *, project_id: str) -> None:
        logger.info("Assign to %s", user_id, extra={"project_id": project_id})

    def add_tag(self, tag: str, *, project_id: str) -> None:
        logger.info("Add tag %s", tag, extra={"project_id": project_id})


class RecordingDispatcher:
    """Collects dispatched calls as ``(method, project_id, args)`` tuples."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, tuple[str, ...]]] = []

    def send_notification(self, template: str, recipient: str, *, project_id: str) -> None:
        self.calls.append(("send_notification", project_id, (template, recipient)))

    def slack_notify(self, channel: str, message: str, *, project_id: str) -> None:
        self.calls.append(("slack_notify", project_id, (channel, message)))

    def assign_to(self, user_id: str, *, project_id: str) -> None:
        self.calls.append(("assign_to", project_id, (user_id,)))

    def add_tag(self, tag: str, *, project_id: str) -> None:
        self.calls.append(("add_tag", project_id, (tag,)))

    def clear(self) -> None:
        self.calls.clear()
