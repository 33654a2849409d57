"""
SSH Deploy

Движок удаленного выполнения упорядоченных задач с зависимостями
на одном или нескольких серверах через SSH.
"""

__version__ = "0.2.0"
__author__ = "SSH Deploy Team"
__email__ = "team@example.com"
