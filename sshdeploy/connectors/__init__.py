"""
Connectors module for SSH Deploy.

This module contains the SSH client, the remote task executor and the
connection pool.
"""

from .ssh_connector import SSHConnector
from .remote_executor import RemoteExecutor
from .connection_pool import ConnectionPool, PooledConnection

__all__ = ["SSHConnector", "RemoteExecutor", "ConnectionPool", "PooledConnection"]
