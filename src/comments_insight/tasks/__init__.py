"""
Task subsystem.

Components:
- task_models.py: data structures (TaskRecord, TaskStatus, snapshots)
- task_store.py: in-memory registry + lifecycle state machine
- dispatcher.py: runs one executor at a time, in queue order
- cancellation.py: cooperative cancellation tokens
- progress.py: stage-based progress translation and ETA
- persistence.py: debounced snapshots and restart recovery
- task_manager.py: the facade the rest of the app uses
"""
