"""Shared helpers: calendar-day handling, structured logging and metrics."""
