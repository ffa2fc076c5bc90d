"""Game clock domain: the countdown state machine, the per-process registry
of live clocks, and the controller/observer sync clients.

Transport and storage concerns stay outside; HTTP routes and socket
handlers go through ``ClockRegistry``.
"""
from .machine import Clock
from .registry import ClockCallbacks, ClockRegistry, RegistrySettings
from .state import ClockConfig, ClockEvent, ClockState, ClockStatus, EventSource, EventType, remaining_seconds
from .sync import ControllerSync, ObserverSync, RegistryTransport, build_controller, build_observer

__all__ = [
    'Clock', 'ClockCallbacks', 'ClockConfig', 'ClockEvent', 'ClockRegistry', 'ClockState',
    'ClockStatus', 'ControllerSync', 'EventSource', 'EventType', 'ObserverSync',
    'RegistrySettings', 'RegistryTransport', 'build_controller', 'build_observer', 'remaining_seconds',
]
