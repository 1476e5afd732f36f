"""
API Dependencies

FastAPI dependencies for the objects built in the application lifespan.
"""

from fastapi import HTTPException, Request, status

from sparq_safety.safety.coordinator import CrisisCoordinator


def get_coordinator(request: Request) -> CrisisCoordinator:
    """
    Crisis coordinator built at startup.

    Usage:
        @router.post("/evaluate")
        async def evaluate(coordinator: CrisisCoordinator = Depends(get_coordinator)):
            ...
    """
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Safety service is starting up",
        )
    return coordinator
