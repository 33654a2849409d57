"""
Тесты для пула SSH соединений
"""
import asyncio
from datetime import timedelta
from unittest.mock import Mock, patch

import pytest

from conftest import make_ssh_client
from sshdeploy.config.runner_config import PoolConfig
from sshdeploy.connectors.connection_pool import ConnectionPool, PooledConnection
from sshdeploy.exceptions import SSHConnectionError
from sshdeploy.models.deploy_models import Host


class TestPooledConnection:
    """Тесты для PooledConnection"""

    def test_usable(self):
        assert PooledConnection(make_ssh_client(), "deploy@10.0.0.1").is_usable() is True

    def test_unusable_without_client(self):
        assert PooledConnection(None, "deploy@10.0.0.1").is_usable() is False

    def test_unusable_inactive_transport(self):
        assert PooledConnection(make_ssh_client(active=False), "deploy@10.0.0.1").is_usable() is False

    def test_unusable_when_session_fails(self):
        client = make_ssh_client([EOFError("transport closed")])

        assert PooledConnection(client, "deploy@10.0.0.1").is_usable() is False

    def test_acquire_release(self):
        conn = PooledConnection(make_ssh_client(), "deploy@10.0.0.1")

        assert conn.try_acquire() is True
        assert conn.try_acquire() is False
        assert conn.release() is False
        assert conn.in_use is False

    def test_close_swallows_errors(self):
        client = make_ssh_client()
        client.close.side_effect = OSError("already closed")
        conn = PooledConnection(client, "deploy@10.0.0.1")

        conn.close()

        client.close.assert_called_once()


class TestConnectionPool:
    """Тесты для ConnectionPool"""

    @pytest.fixture
    def pool(self, connector_factory):
        pool = ConnectionPool(PoolConfig(max_lifetime=300, idle_timeout=60), connector_factory=connector_factory)
        yield pool
        pool.close()

    @pytest.fixture
    def other_host(self):
        return Host(host="10.0.0.2", username="deploy", password="secret")

    @pytest.mark.asyncio
    async def test_new_connection_is_leased(self, pool, sample_host, connector_factory):
        conn = await pool.get_connection("h1", sample_host)

        assert isinstance(conn, PooledConnection)
        assert conn.in_use is True
        assert conn.name == "h1"
        assert "deploy@10.0.0.1" in pool
        connector_factory.created["h1"].connect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reuse_after_release(self, pool, sample_host, connector_factory):
        first = await pool.get_connection("h1", sample_host)
        pool.release_connection(first)

        second = await pool.get_connection("h1", sample_host)

        assert second is first
        assert second.in_use is True
        assert len(connector_factory.created) == 1
        assert len(pool) == 1

    @pytest.mark.asyncio
    async def test_leased_connection_not_shared(self, pool, sample_host):
        first = await pool.get_connection("h1", sample_host)

        with patch.object(pool, '_close_in_background') as close_mock:
            second = await pool.get_connection("h1", sample_host)
            close_mock.assert_not_called()

            assert second is not first
            assert len(pool) == 1

            pool.release_connection(first)
            close_mock.assert_called_once_with(first)

    @pytest.mark.asyncio
    async def test_unusable_connection_replaced(self, pool, sample_host):
        first = await pool.get_connection("h1", sample_host)
        pool.release_connection(first)
        first.client.get_transport.return_value.is_active.return_value = False

        with patch.object(pool, '_close_in_background') as close_mock:
            second = await pool.get_connection("h1", sample_host)

        assert second is not first
        close_mock.assert_called_once_with(first)
        assert pool.stats()['total_connections'] == 1

    @pytest.mark.asyncio
    async def test_evicted_during_liveness_check_not_leased(self, pool, sample_host):
        first = await pool.get_connection("h1", sample_host)
        pool.release_connection(first)

        def evict_then_report_usable():
            pool.cleanup(now=first.created_at + timedelta(hours=1))
            return True

        with patch.object(first, 'is_usable', side_effect=evict_then_report_usable):
            second = await pool.get_connection("h1", sample_host)

        assert second is not first
        assert first.detached is True
        assert first.in_use is False
        assert second.in_use is True
        assert pool._connections["deploy@10.0.0.1"] is second
        assert len(pool) == 1

    def test_detached_not_acquired(self):
        conn = PooledConnection(make_ssh_client(), "deploy@10.0.0.1")
        conn.detached = True

        assert conn.try_acquire() is False
        assert conn.in_use is False

    @pytest.mark.asyncio
    async def test_separate_hosts(self, pool, sample_host, other_host):
        await pool.get_connection("h1", sample_host)
        await pool.get_connection("h2", other_host)

        stats = pool.stats()

        assert stats['total_connections'] == 2
        assert stats['in_use'] == 2
        assert stats['idle'] == 0

    @pytest.mark.asyncio
    async def test_connect_failure_propagates(self, pool, sample_host, connector_factory, connection_refused):
        connector_factory.connect_errors["h1"] = connection_refused

        with pytest.raises(SSHConnectionError):
            await pool.get_connection("h1", sample_host)

        assert len(pool) == 0

    def test_release_none(self, pool):
        pool.release_connection(None)

    @pytest.mark.asyncio
    async def test_stats(self, pool, sample_host):
        conn = await pool.get_connection("h1", sample_host)
        pool.release_connection(conn)

        stats = pool.stats()

        assert stats == {
            'total_connections': 1,
            'in_use': 0,
            'idle': 1,
            'max_idle': 5,
            'max_lifetime': 300,
            'idle_timeout': 60,
        }

    @pytest.mark.asyncio
    async def test_cleanup_lifetime(self, pool, sample_host):
        conn = await pool.get_connection("h1", sample_host)
        pool.release_connection(conn)

        removed = pool.cleanup(now=conn.created_at + timedelta(seconds=301))

        assert removed == ["deploy@10.0.0.1"]
        assert len(pool) == 0

    @pytest.mark.asyncio
    async def test_cleanup_idle(self, pool, sample_host):
        conn = await pool.get_connection("h1", sample_host)
        pool.release_connection(conn)

        assert pool.cleanup(now=conn.last_used + timedelta(seconds=30)) == []
        assert pool.cleanup(now=conn.last_used + timedelta(seconds=61)) == ["deploy@10.0.0.1"]

    @pytest.mark.asyncio
    async def test_cleanup_keeps_leased_idle(self, pool, sample_host):
        conn = await pool.get_connection("h1", sample_host)

        assert pool.cleanup(now=conn.last_used + timedelta(seconds=120)) == []
        assert conn.in_use is True

    @pytest.mark.asyncio
    async def test_cleanup_expired_leased_closed_on_release(self, pool, sample_host):
        conn = await pool.get_connection("h1", sample_host)

        with patch.object(pool, '_close_in_background') as close_mock:
            removed = pool.cleanup(now=conn.created_at + timedelta(seconds=301))
            close_mock.assert_not_called()

            pool.release_connection(conn)
            close_mock.assert_called_once_with(conn)

        assert removed == ["deploy@10.0.0.1"]

    @pytest.mark.asyncio
    async def test_cleanup_loop(self, connector_factory, sample_host):
        pool = ConnectionPool(
            PoolConfig(max_lifetime=0.01, idle_timeout=60, cleanup_interval=0.02),
            connector_factory=connector_factory
        )
        pool.start()
        try:
            conn = await pool.get_connection("h1", sample_host)
            pool.release_connection(conn)

            await asyncio.sleep(0.1)

            assert len(pool) == 0
        finally:
            pool.close()

    @pytest.mark.asyncio
    async def test_cleanup_loop_survives_errors(self, connector_factory):
        pool = ConnectionPool(PoolConfig(cleanup_interval=0.01), connector_factory=connector_factory)
        pool.cleanup = Mock(side_effect=RuntimeError("boom"))
        pool.start()
        try:
            await asyncio.sleep(0.1)

            assert pool.cleanup.call_count >= 2
            assert not pool._cleanup_task.done()
        finally:
            pool.close()

    @pytest.mark.asyncio
    async def test_close(self, connector_factory, sample_host, other_host):
        pool = ConnectionPool(connector_factory=connector_factory)
        pool.start()
        first = await pool.get_connection("h1", sample_host)
        second = await pool.get_connection("h2", other_host)

        pool.close()

        assert len(pool) == 0
        first.client.close.assert_called_once()
        second.client.close.assert_called_once()
        assert pool._cleanup_task is None
