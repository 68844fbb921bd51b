"""
Exception hierarchy shared by the agent loop, the tool executor, the
conversation store and the HTTP layer.

Errors fall into two groups. Tool-level errors ('ToolValidationError',
'ToolInvocationError') are caught inside the agent loop and turned into
'tool-call-failed' stream events, so one bad search never aborts a turn.
Everything else ends the turn: request errors are mapped to HTTP status codes
before streaming starts, and persistence or inference errors close the stream
with an opaque terminal error.
"""


class ResearchToolkitError(Exception):
    """Base class for all toolkit errors."""


class Unauthorized(ResearchToolkitError):
    """No caller identity could be resolved from the request."""


class NotFoundOrUnauthorized(ResearchToolkitError):
    """The conversation does not exist or belongs to somebody else.

    Both cases share one error so that callers cannot probe for the existence
    of other users' conversations.
    """


class EmptyMessagesError(ResearchToolkitError):
    """A chat request arrived without any messages."""


class OwnershipConflict(ResearchToolkitError):
    """A write targeted a conversation owned by a different user."""


class InvalidPartTransition(ResearchToolkitError):
    """A tool-call part was moved backwards or resolved twice."""


class ToolRegistrationError(ResearchToolkitError):
    """A tool could not be added to the executor registry."""


class ToolValidationError(ResearchToolkitError):
    """Tool arguments did not match the tool's schema, or the tool is unknown."""


class ToolInvocationError(ResearchToolkitError):
    """The external capability behind a tool failed."""


class Cancelled(ResearchToolkitError):
    """The turn's cancellation signal fired while work was outstanding."""


class InferenceFailure(ResearchToolkitError):
    """The language model failed while producing a step."""


class ChannelClosedError(ResearchToolkitError):
    """An event was sent to a stream channel that is already closed."""
