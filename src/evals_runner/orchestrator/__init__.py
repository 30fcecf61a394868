"""Eval run orchestration.

A run is a batch of coding exercises attempted by one model. The orchestrator
fans the unfinished tasks of a run out under the run's concurrency cap, either
in-process or one container per task, keeps Redis liveness keys fresh for
external monitors and records the aggregate pass rate when every task settled.

Run and task rows live in SQLite; Redis only carries transient liveness state
(runner membership, heartbeat) and per-task outcome events.
"""
