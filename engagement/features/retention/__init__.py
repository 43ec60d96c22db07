"""
Retention engagement feature package.

Keeps every layer of the automated customer-engagement pipeline
co-located: domain models, the appointment history repository, the pure
pattern/classifier pipeline, the rate limiter and messaging services, the
proactive agent and suggestion worker jobs, and the API router.

Import submodules directly (``from engagement.features.retention.jobs
import proactive_agent``). engagement.config depends on the domain
models, so this package must not re-export anything.
"""
