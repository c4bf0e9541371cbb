"""
Unit tests for the transport connector.
"""

import asyncio
import socket

import aiofiles
import pytest

from filerelay.errors import ConnectError, ResolveError, SourceFileError, TransferError
from filerelay.transfer.connection import Endpoint
from filerelay.transfer.connector import connect, resolve, send_all, send_file, stream_file


class TricklingConnection:
    """Stand-in connection that accepts at most `limit` bytes per send()."""

    def __init__(self, limit: int = 1, fail_after: int = None):
        self.limit = limit
        self.fail_after = fail_after
        self.received = bytearray()
        self.calls = 0

    async def send(self, data) -> int:
        self.calls += 1
        if self.fail_after is not None and self.calls > self.fail_after:
            raise ConnectionResetError("peer reset")
        accepted = bytes(data[:self.limit])
        self.received.extend(accepted)
        return len(accepted)


def _endpoint(port: int) -> Endpoint:
    return Endpoint(socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP, ('127.0.0.1', port))


class TestSendAll:
    """Short writes are retried until the whole chunk is delivered."""

    def test_one_byte_per_call(self):
        conn = TricklingConnection(limit=1)
        data = b"partial writes are not errors"

        sent = asyncio.run(send_all(conn, data))

        assert sent == len(data)
        assert bytes(conn.received) == data
        assert conn.calls == len(data)

    def test_hard_error_aborts(self):
        conn = TricklingConnection(limit=4, fail_after=2)

        with pytest.raises(TransferError):
            asyncio.run(send_all(conn, b"x" * 100))

        assert len(conn.received) == 8

    def test_empty_chunk_sends_nothing(self):
        conn = TricklingConnection()

        assert asyncio.run(send_all(conn, b"")) == 0
        assert conn.calls == 0


class TestStreamFile:
    """File contents arrive intact regardless of chunking."""

    @pytest.mark.parametrize("chunk_size", [1, 7, 1000, 4096, 100000])
    def test_round_trip_any_chunk_size(self, make_file, chunk_size):
        path = make_file(12345)

        async def scenario():
            conn = TricklingConnection(limit=1 << 20)
            async with aiofiles.open(path, 'rb') as source:
                totals = await stream_file(conn, source, chunk_size)
            return conn, totals

        conn, (bytes_sent, chunks_sent) = asyncio.run(scenario())

        assert bytes(conn.received) == path.read_bytes()
        assert bytes_sent == 12345
        assert chunks_sent == -(-12345 // chunk_size)

    def test_trickling_transport_still_delivers_file(self, make_file):
        """A transport taking one byte per call still gets the whole file."""
        path = make_file(3000)

        async def scenario():
            conn = TricklingConnection(limit=1)
            async with aiofiles.open(path, 'rb') as source:
                await stream_file(conn, source)
            return conn

        conn = asyncio.run(scenario())

        assert bytes(conn.received) == path.read_bytes()

    def test_write_failure_stops_remaining_chunks(self, make_file):
        path = make_file(5000)

        async def scenario():
            conn = TricklingConnection(limit=1000, fail_after=2)
            async with aiofiles.open(path, 'rb') as source:
                with pytest.raises(TransferError):
                    await stream_file(conn, source, 1000)
            return conn

        conn = asyncio.run(scenario())

        assert conn.calls == 3
        assert bytes(conn.received) == path.read_bytes()[:2000]

    @pytest.mark.parametrize("chunk_size", [0, -1])
    def test_non_positive_chunk_size_rejected(self, make_file, chunk_size):
        """A zero-byte read would end the loop before anything is sent."""
        path = make_file(5000)

        async def scenario():
            conn = TricklingConnection(limit=1 << 20)
            async with aiofiles.open(path, 'rb') as source:
                with pytest.raises(ValueError):
                    await stream_file(conn, source, chunk_size)
            return conn

        conn = asyncio.run(scenario())

        assert conn.calls == 0


class TestResolveAndConnect:
    """Address lookup and candidate selection."""

    def test_empty_host_rejected(self):
        with pytest.raises(ResolveError):
            asyncio.run(resolve(''))

    def test_lookup_failure(self):
        async def scenario():
            loop = asyncio.get_running_loop()

            async def failing_getaddrinfo(*args, **kwargs):
                raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

            loop.getaddrinfo = failing_getaddrinfo
            await resolve('no-such-host.invalid', 9)

        with pytest.raises(ResolveError):
            asyncio.run(scenario())

    def test_resolve_numeric_host(self):
        endpoints = asyncio.run(resolve('127.0.0.1', 9))

        assert endpoints
        assert endpoints[0].address[:2] == ('127.0.0.1', 9)
        assert str(endpoints[0]) == '127.0.0.1:9'

    def test_all_candidates_refused(self, refused_port):
        with pytest.raises(ConnectError, match="failed to connect"):
            asyncio.run(connect([_endpoint(refused_port)]))

    def test_failed_candidate_skipped(self, refused_port):
        """The first candidate that completes a handshake is used."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
            server.bind(('127.0.0.1', 0))
            server.listen(1)
            good_port = server.getsockname()[1]

            async def scenario():
                conn = await connect([_endpoint(refused_port), _endpoint(good_port)])
                conn.close()
                return conn

            conn = asyncio.run(scenario())

        assert conn.peer == ('127.0.0.1', good_port)
        assert conn.closed


class TestSendFile:
    """End-to-end sends against a running listener."""

    def test_missing_file_sends_nothing(self, listener_factory, eventually, tmp_path):
        async def scenario():
            async with listener_factory() as listener:
                with pytest.raises(SourceFileError):
                    await send_file('127.0.0.1', tmp_path / 'absent.bin',
                                    port=listener.bound_port)
                await eventually(lambda: listener.accepted == 1)
            return listener

        listener = asyncio.run(scenario())

        assert listener.accepted == 1
        assert all(len(data) == 0 for data in listener.sink.streams.values())

    def test_connect_failure(self, make_file, refused_port):
        path = make_file(10)

        with pytest.raises(ConnectError):
            asyncio.run(send_file('127.0.0.1', path, port=refused_port))

    def test_report(self, listener_factory, eventually, make_file):
        path = make_file(2500)

        async def scenario():
            async with listener_factory() as listener:
                report = await send_file('127.0.0.1', path, port=listener.bound_port)
                await eventually(lambda: listener.accepted == 1)
            return listener, report

        listener, report = asyncio.run(scenario())

        assert report.bytes_sent == 2500
        assert report.chunks_sent == 3
        assert report.peer == f"127.0.0.1:{listener.bound_port}"
        assert listener.sink.completed == [path.read_bytes()]

    def test_pre_resolved_endpoints_skip_lookup(self, listener_factory, eventually, make_file):
        """Given endpoints, the host name is never resolved."""
        path = make_file(800)

        async def scenario():
            async with listener_factory() as listener:
                report = await send_file('no-such-host.invalid', path,
                                         endpoints=[_endpoint(listener.bound_port)])
                await eventually(lambda: listener.accepted == 1)
            return listener, report

        listener, report = asyncio.run(scenario())

        assert report.bytes_sent == 800
        assert listener.sink.completed == [path.read_bytes()]
