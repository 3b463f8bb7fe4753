"""
Jobs infrastructure for background processing.

This package provides the job system with:
- Named queues over a pluggable store (Postgres or in-memory)
- Lease heartbeats and stalled job recovery
- Per-queue handler registries and worker pools with rate limits
- Retry with backoff and dead letter promotion after the final attempt
- Repeatable (cron and interval) jobs
"""
