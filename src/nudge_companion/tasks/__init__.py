"""
Task subsystem.

Components:
- task_models.py: data structures (Task, Routine, TaskStatus, state machine)
- task_store.py: SQLite-backed per-user storage
- cadence.py: annoyance-tiered re-ping delays
- recurrence.py: cron helpers for routines
- task_scheduler.py: the periodic tick that fires routines and evaluates due tasks
"""
