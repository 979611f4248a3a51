"""uvicorn entrypoint for the deadswitch API.

Run with: uvicorn main:app --reload

create_app() reads Settings, so the instance lives here rather than in
deadswitch.app; tests build their own app without the environment.
"""

from deadswitch.app import add_request_id_middleware, create_app

app = create_app()
# Added last so it wraps everything, including cron/admin auth failures
add_request_id_middleware(app)

__all__ = ["app"]
