"""mailview application entry point.

Serves one shared ``MailboxView`` to a rendering client: the visible list
of the open folder, its selection, and the archive / spam / inbox and
read-state operations. Configuration comes from ``MAILVIEW_*`` environment
variables (see ``models.settings``).

Development server:
    uv run uvicorn main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from pydantic import ValidationError

from api.dependencies import initialize_mailbox_view, shutdown_mailbox_view
from api.exceptions import (
    folder_not_open_handler,
    generic_exception_handler,
    validation_exception_handler,
    value_error_handler,
)
from api.routes import mailbox as mailbox_routes
from models.mailbox import FolderNotOpenError
from models.settings import MailboxSettings

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the mailbox view at startup and close it at shutdown.

    Args:
        app: The FastAPI application instance.
    """
    settings = MailboxSettings()
    configure_logging(settings.log_level)

    view = initialize_mailbox_view(settings)
    logger.info(
        f"mailview started (transport={type(view.transport).__name__}, "
        f"page_size={settings.page_size})"
    )

    yield

    logger.info("mailview shutting down, waiting for background work")
    await shutdown_mailbox_view()


app = FastAPI(
    title="mailview",
    description="Mailbox client state engine: paginated feeds, selection and optimistic label operations",
    version=VERSION,
    lifespan=lifespan,
)

# Specific exceptions before general ones
app.add_exception_handler(FolderNotOpenError, folder_not_open_handler)
app.add_exception_handler(ValidationError, validation_exception_handler)
app.add_exception_handler(ValueError, value_error_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.include_router(mailbox_routes.router)


@app.get("/")
async def root():
    """Name the service and point at the interactive docs."""
    return {
        "message": "mailview mailbox API",
        "version": VERSION,
        "docs_url": "/docs",
    }


@app.get("/health")
async def health_check():
    """Liveness probe."""
    return {"status": "healthy"}
