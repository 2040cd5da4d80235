from prometheus_client import Counter, Gauge


reminders_scheduled_total = Counter(
    "reminders_scheduled_total",
    "Total medication reminder schedules accepted (one per save)",
)

reminders_cancelled_total = Counter(
    "reminders_cancelled_total",
    "Total local reminder slots cancelled",
)

reminder_slots_fired_total = Counter(
    "reminder_slots_fired_total",
    "Total local reminder slots that fired",
)

reminder_active_slots = Gauge(
    "reminder_active_slots",
    "Local reminder slots currently armed",
)

reminders_resync_total = Counter(
    "reminders_resync_total",
    "Total resynchronisations of local timers",
    ["reason"],
)

reminders_dispatch_total = Counter(
    "reminders_dispatch_total",
    "Notification dispatch outcomes per channel",
    ["channel", "status"],
)

reminder_store_failures_total = Counter(
    "reminder_store_failures_total",
    "Reminder store operations that failed and were degraded",
)
