"""
Error types for the PLC SQL agent.

Every failure in the core is local and recoverable by the next poll tick,
so ``recoverable`` stays True for all of them; it is kept on the base class
so the API layer can report it.
"""

from __future__ import annotations

from typing import Optional


class AgentError(Exception):
    """Base class for all agent errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(AgentError):
    """Register configuration rejected at load time"""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        prefix = f"[{field}] " if field else ""
        super().__init__(f"Config Error: {prefix}{message}")


class InvalidAddressError(AgentError, ValueError):
    """Address string could not be resolved to a word (and bit)"""

    def __init__(self, address: str, reason: str):
        self.address = address
        self.reason = reason
        super().__init__(f"Invalid address {address!r}: {reason}")


class CommunicationError(AgentError):
    """Anything that went wrong talking to the PLC"""

    def __init__(self, message: str, host: Optional[str] = None, port: Optional[int] = None):
        self.host = host
        self.port = port
        super().__init__(message)


class CommunicationTimeout(CommunicationError):
    """Read or write on an open connection exceeded its budget"""


class DeviceUnreachable(CommunicationError):
    """The PLC could not be reached at all"""


class ConnectTimeout(DeviceUnreachable, CommunicationTimeout):
    """Connect attempt was abandoned after the connect timeout"""


class CommunicationFailure(CommunicationError):
    """The PLC answered, but with a short frame or a nonzero end code"""

    def __init__(
        self,
        message: str,
        error_code: Optional[int] = None,
        length: int = 0,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ):
        self.error_code = error_code
        self.length = length
        super().__init__(message, host, port)


class PersistenceFailure(AgentError):
    """A logging query could not be executed"""

    def __init__(self, message: str, table: Optional[str] = None):
        self.table = table
        super().__init__(message)


class ConditionEvaluationFailure(AgentError):
    """A gate expression is malformed or references an unknown register"""

    def __init__(self, message: str, expression: str = ""):
        self.expression = expression
        super().__init__(message)
