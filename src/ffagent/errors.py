from __future__ import annotations


class AgentError(RuntimeError):
    pass


class ValidationError(AgentError, ValueError):
    pass


class DerivationError(ValidationError):
    pass


class ProcessError(AgentError):
    pass


class CapabilityError(AgentError):
    pass
