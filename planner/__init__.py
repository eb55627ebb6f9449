"""Planner service: prioritized daily tasks with recurring series."""
