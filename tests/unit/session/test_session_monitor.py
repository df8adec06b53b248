"""
Tests unitaires pour LOT 5: Session Monitor

- Avertissement une seule fois par instance de jeton, sous le seuil
- Expiration immédiate au premier tick si exp déjà passé
- exp illisible → expiré (fail closed)
- renew(): nouvelle paire persistée, avertissement réarmé
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from src.identity import NetworkFailureError, RefreshRejectedError
from src.session import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    ISessionMonitor,
    MonitorConfig,
    SessionMonitor,
    TickOutcome,
)


SLOW_POLL = timedelta(hours=1)


def make_config(**overrides) -> MonitorConfig:
    values = {
        "on_warning": Mock(),
        "on_expired": Mock(),
        "warning_lead_time": timedelta(seconds=300),
        "poll_interval": SLOW_POLL,
        "on_tick": Mock(),
    }
    values.update(overrides)
    return MonitorConfig(**values)


async def store_token(store, clock, mint, seconds: float) -> str:
    token = mint(clock() + timedelta(seconds=seconds))
    await store.put(ACCESS_TOKEN_KEY, token)
    return token


# ══════════════════════════════════════════════════════════════════════════════
# AVERTISSEMENT
# ══════════════════════════════════════════════════════════════════════════════


class TestWarning:
    """Tests seuil d'avertissement."""

    @pytest.mark.asyncio
    async def test_no_warning_before_threshold(self, monitor, store, clock, mint) -> None:
        """exp = now+1000s, seuil 300s: aucun avertissement avant 700s écoulées."""
        await store_token(store, clock, mint, 1000)
        config = make_config()
        handle = await monitor.start(config)

        for _ in range(69):
            clock.advance(10)
            assert await monitor.tick(handle) == TickOutcome.COUNTING

        clock.advance(9)  # 699s écoulées
        assert await monitor.tick(handle) == TickOutcome.COUNTING
        config.on_warning.assert_not_called()
        assert handle.warning_active is False

        clock.advance(1)  # 700s écoulées
        assert await monitor.tick(handle) == TickOutcome.WARNING
        config.on_warning.assert_called_once()
        assert handle.warning_active is True

    @pytest.mark.asyncio
    async def test_warning_fires_once_per_token(self, monitor, store, clock, mint) -> None:
        """Plusieurs ticks sous le seuil → un seul on_warning."""
        await store_token(store, clock, mint, 290)
        config = make_config()
        handle = await monitor.start(config)

        for _ in range(5):
            clock.advance(10)
            await monitor.tick(handle)

        config.on_warning.assert_called_once()
        assert handle.warning_triggered is True
        assert handle.warning_active is True

    @pytest.mark.asyncio
    async def test_warning_within_first_tick(self, monitor, store, clock, mint) -> None:
        """exp = now+290s, seuil 300s → avertissement au premier tick, ≈290s restantes."""
        await store_token(store, clock, mint, 290)
        config = make_config()

        handle = await monitor.start(config)

        config.on_warning.assert_called_once()
        assert handle.warning_active is True
        assert handle.seconds_remaining == 290
        config.on_tick.assert_called_with(290)

    @pytest.mark.asyncio
    async def test_new_token_rearms_warning(self, monitor, store, clock, mint) -> None:
        """Un jeton écrit par un autre onglet est une nouvelle instance."""
        await store_token(store, clock, mint, 200)
        config = make_config()
        handle = await monitor.start(config)
        assert config.on_warning.call_count == 1

        await store_token(store, clock, mint, 900)
        assert await monitor.tick(handle) == TickOutcome.COUNTING
        assert handle.warning_active is False

        clock.advance(700)
        assert await monitor.tick(handle) == TickOutcome.WARNING
        assert config.on_warning.call_count == 2

    @pytest.mark.asyncio
    async def test_async_callbacks_awaited(self, monitor, store, clock, mint) -> None:
        await store_token(store, clock, mint, 100)
        on_warning = AsyncMock()
        on_tick = AsyncMock()

        await monitor.start(make_config(on_warning=on_warning, on_tick=on_tick))

        on_warning.assert_awaited_once()
        on_tick.assert_awaited_once_with(100)

    @pytest.mark.asyncio
    async def test_callback_error_logged_not_raised(self, monitor, store, clock, mint, logger) -> None:
        await store_token(store, clock, mint, 100)
        config = make_config(on_warning=Mock(side_effect=RuntimeError("ui gone")))

        handle = await monitor.start(config)

        assert handle.warning_triggered is True
        failures = logger.find("Session monitor callback failed")
        assert failures[0].extra["callback"] == "on_warning"


# ══════════════════════════════════════════════════════════════════════════════
# EXPIRATION
# ══════════════════════════════════════════════════════════════════════════════


class TestExpiry:
    """Tests expiration."""

    @pytest.mark.asyncio
    async def test_expired_at_start_fires_on_first_tick(self, monitor, store, clock, mint) -> None:
        """exp = now-1s au démarrage → on_expired au tout premier tick."""
        await store_token(store, clock, mint, -1)
        config = make_config()

        handle = await monitor.start(config)

        config.on_expired.assert_called_once()
        config.on_warning.assert_not_called()
        assert handle.stopped is True
        assert handle.task is None
        assert handle.seconds_remaining == 0

    @pytest.mark.asyncio
    async def test_expiry_fires_once(self, monitor, store, clock, mint) -> None:
        await store_token(store, clock, mint, 20)
        config = make_config()
        handle = await monitor.start(config)

        clock.advance(20)
        assert await monitor.tick(handle) == TickOutcome.EXPIRED
        assert await monitor.tick(handle) == TickOutcome.STOPPED

        config.on_expired.assert_called_once()
        assert handle.warning_active is False

    @pytest.mark.asyncio
    async def test_expiry_is_immediate_at_zero(self, monitor, store, clock, mint) -> None:
        """Aucune période de grâce: remaining == 0 → expiré."""
        await store_token(store, clock, mint, 60)
        config = make_config()
        handle = await monitor.start(config)

        clock.advance(59.5)
        assert await monitor.tick(handle) == TickOutcome.COUNTING
        assert handle.seconds_remaining == 0

        clock.advance(0.5)
        assert await monitor.tick(handle) == TickOutcome.EXPIRED

    @pytest.mark.asyncio
    async def test_missing_exp_fails_closed(self, monitor, store, mint) -> None:
        await store.put(ACCESS_TOKEN_KEY, mint(None))
        config = make_config()

        await monitor.start(config)

        config.on_expired.assert_called_once()

    @pytest.mark.asyncio
    async def test_garbage_token_fails_closed(self, monitor, store) -> None:
        await store.put(ACCESS_TOKEN_KEY, "not-a-jwt")
        config = make_config()

        await monitor.start(config)

        config.on_expired.assert_called_once()

    @pytest.mark.asyncio
    async def test_no_token_stops_silently(self, monitor) -> None:
        config = make_config()

        handle = await monitor.start(config)

        assert handle.stopped is True
        config.on_expired.assert_not_called()
        config.on_warning.assert_not_called()
        config.on_tick.assert_not_called()

    @pytest.mark.asyncio
    async def test_token_removed_while_running(self, monitor, store, clock, mint) -> None:
        await store_token(store, clock, mint, 900)
        config = make_config()
        handle = await monitor.start(config)

        store.remove(ACCESS_TOKEN_KEY)

        assert await monitor.tick(handle) == TickOutcome.NO_TOKEN
        assert handle.active is False
        config.on_expired.assert_not_called()


# ══════════════════════════════════════════════════════════════════════════════
# POLL / ARRÊT
# ══════════════════════════════════════════════════════════════════════════════


class TestPolling:
    """Tests poll périodique et arrêt."""

    @pytest.mark.asyncio
    async def test_poll_rereads_store(self, monitor, store, clock, mint) -> None:
        """Le poll relit le jeton le plus récent à chaque tick."""
        await store_token(store, clock, mint, 900)
        ticks = []
        handle = await monitor.start(
            make_config(poll_interval=timedelta(milliseconds=10), on_tick=ticks.append)
        )

        await store_token(store, clock, mint, 100)
        for _ in range(200):
            if 100 in ticks:
                break
            await asyncio.sleep(0.01)

        assert ticks[0] == 900
        assert 100 in ticks
        monitor.stop(handle)

    @pytest.mark.asyncio
    async def test_stop_cancels_task(self, monitor, store, clock, mint) -> None:
        await store_token(store, clock, mint, 900)
        handle = await monitor.start(make_config())
        task = handle.task

        monitor.stop(handle)
        monitor.stop(handle)
        await asyncio.gather(task, return_exceptions=True)

        assert handle.stopped is True
        assert task.cancelled()
        assert monitor.handles == []

    @pytest.mark.asyncio
    async def test_stopped_handle_ignores_ticks(self, monitor, store, clock, mint) -> None:
        await store_token(store, clock, mint, 100)
        config = make_config()
        handle = await monitor.start(config)
        monitor.stop(handle)

        assert await monitor.tick(handle) == TickOutcome.STOPPED
        assert config.on_tick.call_count == 1

    @pytest.mark.asyncio
    async def test_expiry_callback_may_stop_from_poll(self, monitor, store, clock, mint) -> None:
        """Un stop émis depuis le callback d'expiration n'annule pas le poll en cours."""
        await store_token(store, clock, mint, 5)
        completed = asyncio.Event()
        holder = {}

        async def on_expired() -> None:
            monitor.stop(holder["handle"])
            await asyncio.sleep(0)
            completed.set()

        holder["handle"] = await monitor.start(
            make_config(on_expired=on_expired, poll_interval=timedelta(milliseconds=10))
        )
        clock.advance(10)

        await asyncio.wait_for(completed.wait(), timeout=2)
        assert holder["handle"].stopped is True

    @pytest.mark.asyncio
    async def test_stop_all(self, monitor, store, clock, mint) -> None:
        await store_token(store, clock, mint, 900)
        first = await monitor.start(make_config())
        second = await monitor.start(make_config())

        monitor.stop_all()

        assert first.stopped and second.stopped
        assert monitor.handles == []

    def test_invalid_config(self) -> None:
        with pytest.raises(ValueError):
            make_config(poll_interval=timedelta(0))
        with pytest.raises(ValueError):
            make_config(warning_lead_time=timedelta(seconds=-1))

    def test_implements_interface(self, store, identity) -> None:
        assert isinstance(SessionMonitor(store, identity), ISessionMonitor)


# ══════════════════════════════════════════════════════════════════════════════
# RENOUVELLEMENT
# ══════════════════════════════════════════════════════════════════════════════


class TestRenew:
    """Tests renew()."""

    @pytest.mark.asyncio
    async def test_renew_persists_new_pair(self, monitor, store, identity, clock, mint) -> None:
        await store_token(store, clock, mint, 200)
        await store.put(REFRESH_TOKEN_KEY, "refresh-0")

        tokens = await monitor.renew()

        assert identity.refresh_calls == ["refresh-0"]
        assert await store.get(ACCESS_TOKEN_KEY) == tokens.access_token
        assert await store.get(REFRESH_TOKEN_KEY) == tokens.refresh_token

    @pytest.mark.asyncio
    async def test_renew_resets_warning_and_countdown(self, monitor, store, identity, clock, mint) -> None:
        """Après renew, le décompte suit l'exp du nouveau jeton."""
        await store_token(store, clock, mint, 200)
        await store.put(REFRESH_TOKEN_KEY, "refresh-0")
        config = make_config()
        handle = await monitor.start(config)
        assert handle.warning_active is True

        await monitor.renew(handle)

        assert handle.warning_active is False
        assert handle.warning_triggered is False
        assert handle.seconds_remaining == 900
        assert handle.active is True

    @pytest.mark.asyncio
    async def test_renew_without_refresh_token(self, monitor) -> None:
        with pytest.raises(RefreshRejectedError):
            await monitor.renew()

    @pytest.mark.asyncio
    async def test_renew_failure_propagates(self, monitor, store, identity) -> None:
        await store.put(REFRESH_TOKEN_KEY, "refresh-0")
        identity.refresh_error = NetworkFailureError("offline")

        with pytest.raises(NetworkFailureError):
            await monitor.renew()

    @pytest.mark.asyncio
    async def test_consumed_refresh_token_rejected(self, monitor, store, identity, clock, mint) -> None:
        """Un jeton de rafraîchissement réutilisé est refusé."""
        await store.put(REFRESH_TOKEN_KEY, "refresh-0")
        await monitor.renew()
        await store.put(REFRESH_TOKEN_KEY, "refresh-0")

        with pytest.raises(RefreshRejectedError):
            await monitor.renew()

    @pytest.mark.asyncio
    async def test_tick_reading_token_before_renew_is_dropped(
        self, gated_monitor, gated_store, identity, clock, mint
    ) -> None:
        """Un tick qui a lu l'ancien jeton avant un renouvellement n'expire pas la session."""
        await store_token(gated_store, clock, mint, 5)
        await gated_store.put(REFRESH_TOKEN_KEY, "refresh-0")
        config = make_config()
        handle = await gated_monitor.start(config)

        gate = asyncio.Event()
        gated_store.gate = gate
        stale = asyncio.create_task(gated_monitor.tick(handle))
        await gated_store.paused.wait()

        tokens = await gated_monitor.renew(handle)
        clock.advance(6)
        gate.set()

        assert await stale == TickOutcome.SUPERSEDED
        config.on_expired.assert_not_called()
        assert handle.active is True
        assert await gated_store.get(ACCESS_TOKEN_KEY) == tokens.access_token
        assert await gated_monitor.tick(handle) == TickOutcome.COUNTING
        assert handle.seconds_remaining == 894
