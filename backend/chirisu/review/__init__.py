"""Review workflow for catalog contributions and user reports."""

from chirisu.review.api import router
from chirisu.review.domain.container import configure, configure_in_memory, configure_postgres

__all__ = ["router", "configure", "configure_in_memory", "configure_postgres"]
