"""Reminder module (time parsing, store, channels, dispatcher, scheduler, coordinator).

Reminders are fired by an in-process asyncio scheduler. The database rows are a
passive mirror used for inspection and recovery; they never trigger delivery.
"""
