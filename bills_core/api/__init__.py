"""
Remote access layer for the Bill Tracker sync core
"""

from .gateway import (
    GatewayOperation,
    OperationKind,
    RemoteDataGateway,
)

__all__ = [
    "GatewayOperation",
    "OperationKind",
    "RemoteDataGateway",
]
