"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskState, ExecutionResult, ...)
- task_store.py: SQLite-backed storage + query/update helpers
- cron.py: five-field cron validation and next-run evaluation
- gate.py: admission control (concurrency ceiling + FIFO overflow queue)
- engine.py: single-run lifecycle (claim, execute, record, notify, requeue)
- task_scheduler.py: polling loop that feeds due recurring tasks to the gate
- task_api.py: request-facing validation and queries
"""
