"""
Medication reminder service.

Schedules daily medication reminders in-process, mirrors them to the
database for inspection/recovery, and dispatches push + email notifications.
"""
