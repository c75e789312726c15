"""
Background job queue.

This package provides a relational-store-backed job system with:
- Atomic claiming (single conditional UPDATE, SKIP LOCKED on Postgres)
- Priority ordering and delayed scheduling
- Bounded retries with exponential backoff and jitter
- Registry-based handler dispatch over a closed set of job types
- Processing leases that recover jobs from crashed workers
"""
