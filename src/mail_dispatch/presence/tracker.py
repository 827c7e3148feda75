"""Online status of desktop bridge agents derived from heartbeats."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from mail_dispatch.core.datetime_utils import ensure_utc, utc_now
from mail_dispatch.core.interfaces import PresenceBackend
from mail_dispatch.core.models import AgentStatus, BridgeAgent
from mail_dispatch.core.scheduling import PeriodicPoller

LOGGER = logging.getLogger(__name__)

DEFAULT_ONLINE_WINDOW = timedelta(minutes=7)


def is_online(
    agent: BridgeAgent,
    now: datetime,
    window: timedelta = DEFAULT_ONLINE_WINDOW,
) -> bool:
    """Whether ``agent`` sent a heartbeat within ``window`` before ``now``.

    An agent that never reported is offline.
    """
    last_seen = ensure_utc(agent.last_seen_at)
    if last_seen is None:
        return False
    return ensure_utc(now) - last_seen < window


class BridgePresenceTracker:
    """Keeps the last polled agent list; online status is derived per read.

    Only the heartbeat timestamps are stored. A status read a minute later can
    differ without any new poll.
    """

    def __init__(
        self,
        backend: PresenceBackend,
        *,
        online_window: timedelta = DEFAULT_ONLINE_WINDOW,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Track agents reported by ``backend``."""
        self._backend = backend
        self._window = online_window
        self._clock = clock
        self._agents: tuple[BridgeAgent, ...] = ()

    @property
    def agents(self) -> tuple[BridgeAgent, ...]:
        return self._agents

    async def poll(self) -> tuple[BridgeAgent, ...]:
        """Reload the agent list; a failure leaves the previous list in place."""
        self._agents = tuple(await self._backend.list_agents())
        LOGGER.debug("Polled %d bridge agent(s)", len(self._agents))
        return self._agents

    def poller(self, interval_seconds: float) -> PeriodicPoller:
        return PeriodicPoller("bridge-agents", interval_seconds, self.poll)

    def statuses(self, now: datetime | None = None) -> list[AgentStatus]:
        """Online status of every known agent as of ``now``."""
        moment = ensure_utc(now) if now is not None else self._clock()
        result = []
        for agent in self._agents:
            last_seen = ensure_utc(agent.last_seen_at)
            result.append(
                AgentStatus(
                    agent=agent,
                    online=is_online(agent, moment, self._window),
                    seen_seconds_ago=(
                        (moment - last_seen).total_seconds()
                        if last_seen is not None
                        else None
                    ),
                )
            )
        return result

    def online_agents(self, now: datetime | None = None) -> list[BridgeAgent]:
        return [status.agent for status in self.statuses(now) if status.online]

    def any_online(self, now: datetime | None = None) -> bool:
        """Whether at least one agent can currently pick up handoffs."""
        return bool(self.online_agents(now))


__all__ = ["BridgePresenceTracker", "DEFAULT_ONLINE_WINDOW", "is_online"]
