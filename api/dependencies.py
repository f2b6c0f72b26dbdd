"""Dependency injection providers for the FastAPI application.

This module defines dependencies that can be injected into route handlers,
providing access to the shared MailboxView.
"""

import logging
from typing import Annotated

from fastapi import Depends

from models.mailbox import MailboxView
from models.session import Session
from models.settings import MailboxSettings
from transport import HTTPMailTransport, InMemoryMailTransport, MailTransport

logger = logging.getLogger(__name__)


# Global state
# One mailbox view per process, created when the app starts
_mailbox_view: MailboxView | None = None


def get_mailbox_view() -> MailboxView:
    """Return the process-wide MailboxView for route handlers.

    Routes take it through ``Depends``; tests swap it with
    ``app.dependency_overrides``.

    Returns:
        The shared MailboxView instance.

    Raises:
        RuntimeError: If the view hasn't been initialized yet.
    """
    if _mailbox_view is None:
        raise RuntimeError(
            "MailboxView not initialized. Call initialize_mailbox_view() first."
        )

    return _mailbox_view


def build_transport(settings: MailboxSettings, session: Session) -> MailTransport:
    """Create the transport selected by the settings.

    Args:
        settings: Application settings.
        session: Session whose identity the gateway receives.

    Returns:
        An HTTP transport when a gateway URL is configured, else an in-memory one.
    """
    if settings.transport_base_url:
        return HTTPMailTransport(
            base_url=settings.transport_base_url,
            session=session,
            timeout=settings.transport_timeout,
            retry_enabled=settings.transport_retry_enabled,
            max_retries=settings.transport_max_retries,
        )
    logger.info("No gateway configured, using the in-memory transport")
    return InMemoryMailTransport(thread_marker=settings.thread_marker)


def initialize_mailbox_view(
    settings: MailboxSettings | None = None,
    transport: MailTransport | None = None,
) -> MailboxView:
    """Initialize the shared MailboxView instance.

    This should be called once when the FastAPI app starts up.

    Args:
        settings: Application settings; read from the environment if omitted.
        transport: Transport to use; built from the settings if omitted.

    Returns:
        The newly created MailboxView instance.
    """
    global _mailbox_view

    settings = settings or MailboxSettings()
    session = Session(user_id=settings.user_id, connection_id=settings.connection_id)
    if not session.is_active:
        logger.warning("No session configured; remote operations will be refused")

    _mailbox_view = MailboxView(
        transport=transport or build_transport(settings, session),
        session=session,
        settings=settings,
    )
    return _mailbox_view


async def shutdown_mailbox_view() -> None:
    """Shut down the MailboxView gracefully.

    This should be called when the FastAPI app shuts down. Waits for
    background work and closes the transport.
    """
    global _mailbox_view

    if _mailbox_view is not None:
        await _mailbox_view.close()

    _mailbox_view = None


# Type alias for dependency injection
MailboxViewDep = Annotated[MailboxView, Depends(get_mailbox_view)]
