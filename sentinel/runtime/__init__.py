"""Scheduling primitives shared by the session runtime."""

from .timers import Clock, LoopClock, Timer, TimerRegistry

__all__ = ["Clock", "LoopClock", "Timer", "TimerRegistry"]
