"""
Exception types raised by the computer-use agent.
"""


class ComputerUseError(Exception):
    """Base class for every error raised by this package"""


class ActionValidationError(ComputerUseError):
    """An action is missing a required parameter (caller error, never retried)"""


class ActionExecutionError(ComputerUseError):
    """The browser failed while performing an action"""


class BrowserLaunchError(ComputerUseError):
    """The registry could not produce a usable browser for a session"""


class ModelCallError(ComputerUseError):
    """The language model provider call failed"""


class TranscriptWriteError(ComputerUseError):
    """A step could not be written to the transcript store"""


class PipelineInputError(ComputerUseError):
    """The submitted task is malformed"""
