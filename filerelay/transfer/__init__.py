"""
Transfer Module - Raw TCP Send/Receive

Handles the client side (connector) and the server side (listener and
per-connection workers) of a file relay.
"""

from .connection import Connection, Endpoint
from .connector import TransferReport, resolve, connect, send_all, send_file
from .listener import Listener
from .output import OutputSink, StdoutSink, BufferSink
from .worker import ConnectionWorker, WorkerContext, WorkerResult

__all__ = [
    'Connection',
    'Endpoint',
    'TransferReport',
    'resolve',
    'connect',
    'send_all',
    'send_file',
    'Listener',
    'OutputSink',
    'StdoutSink',
    'BufferSink',
    'ConnectionWorker',
    'WorkerContext',
    'WorkerResult',
]
