"""API route package — imports all routers for main.py."""

from lms.api.health import router as health_router  # noqa: F401
from lms.api.tests import router as tests_router  # noqa: F401
from lms.api.attempts import router as attempts_router  # noqa: F401
