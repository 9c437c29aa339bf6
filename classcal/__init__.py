"""Recurring class scheduling: recurrence expansion and instance reconciliation."""
