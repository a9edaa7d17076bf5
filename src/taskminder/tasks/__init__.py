"""
Task subsystem (the slice the scheduler touches).

Components:
- task_models.py: data structures (Task, RecurringConfig, ReminderConfig, ...)
- task_store.py: SQLite-backed storage + scan/handle helpers
- lifecycle.py: hooks that arm/disarm reminders as tasks are created, updated, deleted
"""
