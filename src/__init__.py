"""
Task Execution Supervisor

Runs one worker process per task and keeps the task store truthful:
- Launches the worker bound to a task id
- Watches process exit, store status changes and cancellation
- Terminates gracefully, force-kills after a grace period
- Records failures, including clean exits that never completed the task
"""

__version__ = "0.1.0"
