"""
Gateway package for expensesync: the contract for talking to the remote
authority and its HTTP implementation.
"""

from expensesync.gateway.base import AbstractRemoteGateway, RemoteGateway
from expensesync.gateway.http import HttpRemoteGateway

__all__ = [
    "AbstractRemoteGateway",
    "HttpRemoteGateway",
    "RemoteGateway",
]
