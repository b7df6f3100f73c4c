"""
Error types for the guided intake flow engine.

Validation and staleness are recovered inside the engine and reported
through SubmitResult. Persistence and lead-creation errors propagate so the
request layer can turn them into a retry prompt.
"""

from typing import Optional


class FlowError(Exception):
    """Base class for all flow engine errors."""


class ConfigurationError(FlowError):
    """The step graph is malformed. Raised at import, never mid-conversation."""


class StepNotFoundError(ConfigurationError):
    def __init__(self, step_id: str):
        super().__init__(f"Unknown step id: {step_id!r}")
        self.step_id = step_id


class StaleTransitionError(FlowError):
    """A submission was computed against a step the session has already left."""

    def __init__(self, session_id: str, expected_step_id: Optional[str], current_step_id: Optional[str]):
        super().__init__(
            f"Session {session_id} is at {current_step_id!r}, "
            f"submission targeted {expected_step_id!r}"
        )
        self.session_id = session_id
        self.expected_step_id = expected_step_id
        self.current_step_id = current_step_id


class SessionNotFoundError(FlowError):
    def __init__(self, session_id: str):
        super().__init__(f"Chat session not found: {session_id}")
        self.session_id = session_id


class PersistenceError(FlowError):
    """The session store is unavailable. Session state is unchanged."""


class LeadCreationError(FlowError):
    """The lead could not be created. The session stays at the confirmation step."""

    user_message = (
        "I apologize, but I had trouble saving your information. "
        "Please try again or call us directly."
    )


class LeadValidationError(LeadCreationError):
    """The lead service rejected the request because required fields are missing."""

    def __init__(self, missing_fields):
        super().__init__(f"Missing required lead fields: {', '.join(missing_fields)}")
        self.missing_fields = list(missing_fields)


class NotificationError(FlowError):
    """An SMS or email side effect failed. Logged only."""
