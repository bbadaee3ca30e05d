"""Part states and state machines."""

from src.state.machine import IDLE, State, StateMachine, machine_for, reachable_states, validate_totality

__all__ = ["IDLE", "State", "StateMachine", "machine_for", "reachable_states", "validate_totality"]
