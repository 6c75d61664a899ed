"""Shared error codes, user-facing messages and exceptions."""

from __future__ import annotations

PERMISSION_DENIED = "PERMISSION_DENIED"
TRANSIENT_NOISE = "TRANSIENT_NOISE"
NETWORK_ERROR = "NETWORK_ERROR"
AUTH_FAILED = "AUTH_FAILED"
RECOGNITION_FAILED = "RECOGNITION_FAILED"
COMMAND_UNRECOGNIZED = "COMMAND_UNRECOGNIZED"
HANDLER_FAILURE = "HANDLER_FAILURE"
NO_INPUT = "NO_INPUT"

ERROR_MESSAGES = {
    PERMISSION_DENIED: "Microphone permission denied. Enable microphone access and try again.",
    TRANSIENT_NOISE: "No speech detected.",
    NETWORK_ERROR: "Network error. Please check your internet connection.",
    AUTH_FAILED: "API key is invalid.",
    RECOGNITION_FAILED: "Speech recognition failed.",
    COMMAND_UNRECOGNIZED: "Could not understand the command.",
    HANDLER_FAILURE: "Something went wrong while handling the command.",
    NO_INPUT: "Could not hear you clearly.",
}

# Raw engine error names, as reported through RecognitionEngine.on_error.
ENGINE_PERMISSION_ERRORS = frozenset({"not-allowed", "service-not-allowed"})
ENGINE_TRANSIENT_ERRORS = frozenset({"no-speech", "aborted", "audio-capture"})
ENGINE_NETWORK_ERRORS = frozenset({"network"})


class AssistantError(Exception):
    code = HANDLER_FAILURE

    def __init__(self, message: str = "") -> None:
        super().__init__(message or ERROR_MESSAGES.get(self.code, self.code))
        self.message = str(self.args[0])


class PermissionDeniedError(AssistantError):
    code = PERMISSION_DENIED


class CommandUnrecognizedError(AssistantError):
    code = COMMAND_UNRECOGNIZED


class HandlerFailureError(AssistantError):
    code = HANDLER_FAILURE


class NoInputError(AssistantError):
    code = NO_INPUT


class EngineBusyError(RuntimeError):
    """Raised by an engine asked to start while it is already starting."""
