"""Connection-state rules shared by the peer manager and reconnection controller."""

from collections.abc import Iterable

from livecast.schemas import ConnectionState, SignalingState


class PeerStateMachine:
    """Classification and aggregation of peer connection states.

    - FAILED/CLOSED are terminal: the connection will not recover.
    - A viewer replaces its session before applying a new offer when the old
      one is FAILED, CLOSED or DISCONNECTED.
    - A viewer schedules a retry on entering FAILED or DISCONNECTED.
    - A remote offer is applied only in the STABLE signaling state; an offer
      arriving in any other state (glare) is dropped without rollback.
    """

    TERMINAL_STATES: set[ConnectionState] = {ConnectionState.FAILED, ConnectionState.CLOSED}

    REPLACEABLE_STATES: set[ConnectionState] = {
        ConnectionState.FAILED,
        ConnectionState.CLOSED,
        ConnectionState.DISCONNECTED,
    }

    RETRY_STATES: set[ConnectionState] = {ConnectionState.FAILED, ConnectionState.DISCONNECTED}

    @classmethod
    def is_terminal(cls, state: ConnectionState) -> bool:
        return state in cls.TERMINAL_STATES

    @classmethod
    def needs_replacement(cls, state: ConnectionState) -> bool:
        return state in cls.REPLACEABLE_STATES

    @classmethod
    def triggers_retry(cls, state: ConnectionState) -> bool:
        return state in cls.RETRY_STATES

    @classmethod
    def can_accept_offer(cls, state: SignalingState) -> bool:
        return state == SignalingState.STABLE

    @classmethod
    def aggregate(cls, states: Iterable[ConnectionState]) -> ConnectionState:
        """Summarize many streamer-side sessions as one state.

        Any CONNECTED wins; otherwise any CONNECTING; otherwise a non-empty
        set is DISCONNECTED and an empty set is NEW.

        Args:
            states: Connection states of every current session

        Returns:
            The aggregate connection state
        """
        states = list(states)
        if any(state == ConnectionState.CONNECTED for state in states):
            return ConnectionState.CONNECTED
        if not states:
            return ConnectionState.NEW
        if any(state == ConnectionState.CONNECTING for state in states):
            return ConnectionState.CONNECTING
        return ConnectionState.DISCONNECTED
