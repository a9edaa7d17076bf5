"""
taskminder: deferred reminders and recurring tasks for a personal task manager.

Components:
- scheduling/reminder_scheduler.py: arm/disarm one-shot reminder triggers
- scheduling/dispatcher.py: deliver a fired reminder and self-clean its trigger
- scheduling/trigger_worker.py: polling worker that fires due triggers
- scheduling/recurrence.py: daily expansion of recurring templates into instances
- tasks/lifecycle.py: glue used by task create/update/delete
"""

__version__ = "0.1.0"
