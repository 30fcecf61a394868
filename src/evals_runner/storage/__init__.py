"""SQLite storage for runs, tasks and aggregate metrics."""
