from __future__ import annotations

import logging
from urllib.parse import urlsplit

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import router
from .config import Settings, get_settings, runtime_secret_issues

logger = logging.getLogger(__name__)

_GUARD_REMEDIATION = (
    "set RECOVERY_LINK_SECRET and the notifier credentials, "
    "or use NOTIFIER_SENDER_TYPE=stub for local runs"
)


def _guard_runtime_secrets(settings: Settings) -> None:
    mode = settings.runtime_secret_guard_mode
    issues = runtime_secret_issues(settings)
    if not issues or mode == "off":
        return
    if mode == "enforce":
        raise RuntimeError(f"runtime secret guard blocked startup: {'; '.join(issues)}. Remediation: {_GUARD_REMEDIATION}.")
    for issue in issues:
        logger.warning("runtime secret guard warning: %s", issue)


def _cors_origin(app_base_url: str) -> str:
    """Scheme and host of the merchant app, which is the only browser caller."""
    parts = urlsplit(app_base_url.strip())
    if parts.scheme and parts.netloc:
        return f"{parts.scheme}://{parts.netloc}"
    return app_base_url.strip().rstrip("/")


def create_app() -> FastAPI:
    settings = get_settings()
    _guard_runtime_secrets(settings)

    app = FastAPI(title=settings.app_name, version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[_cors_origin(settings.app_base_url)],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
