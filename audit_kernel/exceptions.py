"""
Typed Exception Hierarchy for the Drive audit system.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The job controller decides between "recover locally", "abort the job" and
"keep the job but flag it" purely by exception type.  Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, safe for status output)
  3. Carries structured DATA (not just a message string)

Example - RIGHT way:
    try:
        state = repository.load()
    except CheckpointCorruptionError as e:
        log.error("checkpoint unreadable", extra={"key": e.key})
        fail_job(e)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    DriveAuditError (base)
    |
    +-- JobError
    |   +-- StaleJobTokenError
    |   +-- HandlerNotRegisteredError
    |
    +-- CheckpointError
    |   +-- CheckpointCorruptionError
    |
    +-- DataSourceError
    |   +-- TransientFetchError
    |   +-- PermissionFetchError
    |
    +-- SchedulingError
        +-- SchedulingFailureError
        +-- InvalidCronExpressionError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category    | Code                     | When Raised
------------|--------------------------|---------------------------------------------
Job         | JOB_SUPERSEDED           | Persisted job token no longer matches ours
            | HANDLER_NOT_REGISTERED   | Continuation fired for an unknown handler
------------|--------------------------|---------------------------------------------
Checkpoint  | CHECKPOINT_CORRUPTION    | Persisted job state cannot be decoded
------------|--------------------------|---------------------------------------------
DataSource  | TRANSIENT_FETCH_ERROR    | Listing a page of items failed (fatal)
            | PERMISSION_FETCH_ERROR   | Listing one item's permissions failed
------------|--------------------------|---------------------------------------------
Scheduling  | SCHEDULING_FAILURE       | Continuation could not be registered
            | INVALID_CRON_EXPRESSION  | Recurring schedule expression is malformed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. PAGE FAILURES ARE FATAL:

    except TransientFetchError as e:
        transition_to_error(e)   # no partial retry of the page

2. PERMISSION FAILURES ARE LOCAL:

    except PermissionFetchError as e:
        rows = expand_item(item, failed=True)   # job continues

3. SUPERSEDED INVOCATIONS STOP QUIETLY:

    except StaleJobTokenError:
        return  # someone cancelled or restarted the job; write nothing

===============================================================================
"""


class DriveAuditError(Exception):
    """
    Base exception for all Drive audit errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "DRIVE_AUDIT_ERROR"


# Job-related exceptions


class JobError(DriveAuditError):
    """Base exception for job lifecycle errors."""

    code: str = "JOB_ERROR"


class StaleJobTokenError(JobError):
    """
    The persisted job no longer belongs to this invocation.

    Raised by the token fence when the stored state has been deleted
    (cancelled) or replaced (restarted) since this invocation loaded it.
    """

    code: str = "JOB_SUPERSEDED"

    def __init__(self, job_id: str, expected_token: int, found_token: int | None):
        self.job_id = job_id
        self.expected_token = expected_token
        self.found_token = found_token
        super().__init__(
            f"Job {job_id} superseded: expected token {expected_token}, "
            f"found {found_token if found_token is not None else 'no job'}"
        )


class HandlerNotRegisteredError(JobError):
    """A continuation fired for a handler name with no registered callable."""

    code: str = "HANDLER_NOT_REGISTERED"

    def __init__(self, handler: str, available: tuple[str, ...] = ()):
        self.handler = handler
        self.available = available
        super().__init__(
            f"No handler registered for '{handler}'. "
            f"Available: {list(available)}"
        )


# Checkpoint-related exceptions


class CheckpointError(DriveAuditError):
    """Base exception for checkpoint persistence errors."""

    code: str = "CHECKPOINT_ERROR"


class CheckpointCorruptionError(CheckpointError):
    """Persisted job state cannot be parsed; the job cannot safely resume."""

    code: str = "CHECKPOINT_CORRUPTION"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Checkpoint '{key}' is corrupt: {reason}")


# Data source exceptions


class DataSourceError(DriveAuditError):
    """Base exception for data source (Drive API) errors."""

    code: str = "DATA_SOURCE_ERROR"


class TransientFetchError(DataSourceError):
    """Listing a page of items failed.  Fatal to the job."""

    code: str = "TRANSIENT_FETCH_ERROR"

    def __init__(self, cursor: str | None, reason: str):
        self.cursor = cursor
        self.reason = reason
        super().__init__(
            f"Failed to list items at cursor {cursor or '<start>'}: {reason}"
        )


class PermissionFetchError(DataSourceError):
    """Listing one item's permissions failed.  Recovered locally."""

    code: str = "PERMISSION_FETCH_ERROR"

    def __init__(self, item_id: str, reason: str):
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"Failed to list permissions for {item_id}: {reason}")


# Scheduling exceptions


class SchedulingError(DriveAuditError):
    """Base exception for continuation / recurring schedule errors."""

    code: str = "SCHEDULING_ERROR"


class SchedulingFailureError(SchedulingError):
    """A continuation registration could not be created."""

    code: str = "SCHEDULING_FAILURE"

    def __init__(self, handler: str, reason: str):
        self.handler = handler
        self.reason = reason
        super().__init__(f"Failed to schedule '{handler}': {reason}")


class InvalidCronExpressionError(SchedulingError):
    """A recurring schedule expression is malformed."""

    code: str = "INVALID_CRON_EXPRESSION"

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid cron expression '{expression}': {reason}")
