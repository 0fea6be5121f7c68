"""Run id context variable for logging"""

import contextvars
import uuid

# Identifies one CLI invocation across all of its log lines
run_id_context: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "run_id", default=None
)


def new_run_id() -> str:
    """Generate a fresh run id and bind it to the current context."""
    run_id = uuid.uuid4().hex[:12]
    run_id_context.set(run_id)
    return run_id
