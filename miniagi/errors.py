"""Exception types shared across miniagi."""


class MiniAgiError(Exception):
    """Base class for miniagi errors."""


class ValidationError(MiniAgiError, ValueError):
    """Input is missing a required field or carries an invalid value."""


class TaskNotFoundError(MiniAgiError, LookupError):
    """An operation referenced a task id that is not in the user's index."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class TransportError(MiniAgiError):
    """The chat transport rejected a call."""


class MessageNotModified(TransportError):
    """Edit target already holds identical content."""


class TransientTransportError(TransportError):
    """Rate limits, timeouts and similar failures worth ignoring for best-effort calls."""


class AgentTurnError(MiniAgiError):
    """The agent ended the turn with an error and no reply."""
