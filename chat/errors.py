from __future__ import annotations


class RelayError(Exception):
    """Base class for failures raised by the chat relay."""


class EmptyPromptError(RelayError, ValueError):
    pass


class BackendError(RelayError):
    """The chat backend could not produce a reply."""


class BackendUnavailableError(BackendError):
    """Connection or transport failure before any reply fragment arrived."""


class BackendProtocolError(BackendError):
    """The backend stream contained something that is not a valid chunk."""


class TemplateRenderError(RelayError):
    pass
