"""Entry Points — command surface поверх DefenseEngine."""

from .gateway import CommandResult, ProtocolGateway

__all__ = [
    "CommandResult",
    "ProtocolGateway",
]
