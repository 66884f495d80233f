"""
Shared infrastructure for the reminder pipeline: job store, reminder log,
audit and volunteer notification sinks
"""
