"""
Planner Engine Services

- recurrence: expands recurring parents and patterns into occurrences
- materializer: stores single occurrences and keeps exceptions in step
- priority / reorder: priority numbering and optimistic reordering
- pattern_service / migrator: recurring pattern lifecycle and legacy migration
- state: the per-user state container and its selectors
"""
