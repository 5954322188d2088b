from __future__ import annotations

from roomsync.domain.common.types import RoomStatus, SearchState

TERMINAL_SEARCH_STATES: frozenset[SearchState] = frozenset(
    {"matched_guest", "matched_host", "timed_out", "cancelled"}
)


def can_transition_to(current: RoomStatus, target: RoomStatus) -> bool:
    """
    Validate room status transitions.
    """
    transitions: dict[RoomStatus, list[RoomStatus]] = {
        "waiting": ["playing"],
        "playing": ["finished"],
        "finished": [],
    }
    return target in transitions.get(current, [])


def can_transition_search(current: SearchState, target: SearchState) -> bool:
    """
    Validate matchmaking search transitions: searching -> one terminal state.
    """
    return current == "searching" and target in TERMINAL_SEARCH_STATES
