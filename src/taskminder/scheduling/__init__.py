"""
Scheduling subsystem.

Components:
- trigger_store.py: SQLite one-shot trigger registry (rule + targets)
- reminder_scheduler.py: arm/disarm reminder triggers
- dispatcher.py: deliver a fired reminder over its channels, then self-clean
- trigger_worker.py: polling worker that fires due triggers
- recurrence.py: daily expansion of recurring templates
"""
