"""Task engine for the practice-management backend.

This package provides the task model, the file-backed store, the
dependency/status/progress/time/recurrence/workflow components and the
:class:`TaskEngine` facade that ties them together.
"""
