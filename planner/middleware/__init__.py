"""Middleware package for the planner API."""
