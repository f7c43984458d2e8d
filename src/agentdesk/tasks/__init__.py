"""Tasks, comments, audit logs and the task queue."""
