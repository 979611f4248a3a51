"""Liveness endpoint for the API process."""

from fastapi import APIRouter, Request

from deadswitch.responses import success_response

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Report that the process is up and which mail provider it will use.

    No auth and no database round trip: a down database must not stop the
    orchestrator from seeing a live process.
    """
    services = request.app.state.services
    return success_response(
        {
            "status": "ok",
            "emailProvider": services.provider.name,
            "serverShareKeyLoaded": services.cipher is not None,
        }
    )
