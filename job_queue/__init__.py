"""
Job Queue — delayed expiration jobs.

Producers ENQUEUE typed expiration jobs with a delay and keep the returned
job id on the entity for cancellation; the ExpirationWorker CLAIMS due jobs
and dispatches them to the expiration handlers.
Supports Redis (production) and an in-memory heap (dev/tests).
"""
