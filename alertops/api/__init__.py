"""HTTP status API."""

from alertops.api.status import create_app, start_status_api

__all__ = ["create_app", "start_status_api"]
