"""Pydantic schemas for tasks and recurring patterns."""
