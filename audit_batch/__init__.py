"""
audit_batch -- Resumable, checkpointed Drive permission audit engine.

Audits every file of a paginated Drive listing together with its
permissions under a hard per-invocation time budget: progress is
checkpointed after every page, the invocation stops voluntarily before
the budget runs out, and a continuation is scheduled to resume exactly
at the stored cursor.

Architecture:
    audit_batch/ is a top-level package above audit_kernel.  Nothing in
    audit_kernel imports from audit_batch except ``create_tables()``,
    which imports the models so their tables are registered.

Invariants:
    DA-1  Single job state record, always written whole
    DA-2  Job tokens never repeat
    DA-3  Token fence on every write (cancel / restart race)
    DA-4  Rows per item == max(1, permission count)
    DA-5  Result sink is append-only
    DA-6  At-least-once continuation delivery, one pending continuation
    DA-7  Tagged outcomes for expected data source failures
    DA-8  Continuation and recurring registrations are independent
    DA-9  One callable per handler name
    DA-10 Graceful runner shutdown
    DA-11 Budget checked once per page, before the fetch
"""
