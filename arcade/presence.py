from __future__ import annotations

from enum import StrEnum

from statemachine import State, StateMachine


class PresencePhase(StrEnum):
    connected = "connected"
    identified = "identified"
    disconnected = "disconnected"


class PresenceFSM(StateMachine):
    """Lifecycle of one live connection.

    A connection starts anonymous, becomes identified once the client says who
    it is, and is dropped on transport close. Graceful and abrupt closes both
    go through `drop`.
    """

    connected = State(PresencePhase.connected.value, value=PresencePhase.connected.value, initial=True)
    identified = State(PresencePhase.identified.value, value=PresencePhase.identified.value)
    disconnected = State(PresencePhase.disconnected.value, value=PresencePhase.disconnected.value, final=True)

    identify = connected.to(identified)
    drop = connected.to(disconnected) | identified.to(disconnected)

    @property
    def phase(self) -> PresencePhase:
        return PresencePhase(str(self.current_state_value))

    @property
    def is_identified(self) -> bool:
        return self.identified.is_active
