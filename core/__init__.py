# Calendar Reminder Bot core
"""
Calendar reconciliation and reminder scheduling.

Usage:
    from core.normalizer import EventNormalizer
    from core.event_store import EventStore
    from core.reminders import ReminderScheduler
"""
