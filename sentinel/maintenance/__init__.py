from .scheduler import MaintenanceScheduler, ScheduledTask, TaskKind, subscribe_status_updates

__all__ = ["MaintenanceScheduler", "ScheduledTask", "TaskKind", "subscribe_status_updates"]
