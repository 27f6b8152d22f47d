"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus, GenerationConfig, staging drafts)
- task_store.py: in-memory store with atomic claim + change notifications
- task_scheduler.py: admission loop enforcing the concurrency cap (FIFO, staggered)
- task_executor.py: runs one claimed task against the generation client
- task_api.py: queue operations used by the console (enqueue, staging, clear, retry)
"""
