"""Prometheus metrics: HTTP instrumentation plus forum-specific counters."""

from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator
from fastapi import FastAPI

LOGIN_ATTEMPTS = Counter(
    "forum_login_attempts_total",
    "Login attempts by outcome",
    ["outcome"],  # success, invalid_credentials
)

REACTION_TOGGLES = Counter(
    "forum_reaction_toggles_total",
    "Reaction toggles by target kind and resulting stance",
    ["kind", "result"],  # result: like, dislike, none
)


def setup_monitoring(app: FastAPI) -> None:
    """Instrument the app and expose ``/metrics``."""
    instrumentator = Instrumentator(
        should_group_status_codes=False,
        should_ignore_untemplated=True,
        should_respect_env_var=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/metrics", "/health"],
        env_var_name="ENABLE_METRICS",
        inprogress_name="http_requests_inprogress",
        inprogress_labels=True,
    )
    instrumentator.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)
