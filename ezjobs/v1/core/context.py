from typing import TYPE_CHECKING

from fastapi import Depends, Request

if TYPE_CHECKING:
    from ezjobs.context import AppContext


def get_context(request: Request) -> "AppContext":
    """Dependency returning the context built at application startup."""
    return request.app.state.context


# Convenience type alias for dependency injection
ContextDep = Depends(get_context)
