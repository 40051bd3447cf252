"""
Batch Module
============

Sequential batch rendering of poster variants.

Components:
- cancellation: cancellation token observed at every suspension point
- orchestrator: task state machine with start/pause/resume/cancel/retry
- variants: expansion of a template into named variant tasks
- delivery: artifact naming and staggered delivery
"""
