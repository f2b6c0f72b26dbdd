"""Mailbox view configuration.

Every field can be set from a ``MAILVIEW_<FIELD>`` environment variable or a
``.env`` file; keyword arguments win over both. Empty variables are ignored.
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MailboxSettings(BaseSettings):
    """Tunable behavior of the mailbox view.

    Args:
        page_size: Items requested per page.
        row_height: Row height in pixels for the regular list.
        compact_row_height: Row height in pixels for the compact list.
        compact: Whether the list renders compact rows.
        load_more_threshold_rows: Rows from the bottom at which the next page loads.
        thread_marker: Prefix that turns an id into a thread-level target.
        bulk_strategy: "batch" issues one batched call for more than one item;
            "per_item" issues one concurrent call per item.
        reconcile_partial_success: With "per_item", remove only the items whose
            calls succeeded instead of reporting uniform failure.
        rollback_read_on_failure: Restore the unread flag when mark-read on open fails.
        transport_base_url: Mail provider gateway; None selects the in-memory transport.
        transport_timeout: Request timeout in seconds.
        transport_retry_enabled: Retry transient gateway failures.
        transport_max_retries: Maximum retry attempts.
        user_id: Session user identity supplied by the host.
        connection_id: Session connection handle supplied by the host.
        log_level: Root log level.
    """

    model_config = SettingsConfigDict(
        env_prefix="MAILVIEW_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    page_size: int = Field(default=20, gt=0)
    row_height: int = Field(default=96, gt=0)
    compact_row_height: int = Field(default=64, gt=0)
    compact: bool = False
    load_more_threshold_rows: int = Field(default=2, ge=0)
    thread_marker: str = "thread:"
    bulk_strategy: Literal["batch", "per_item"] = "batch"
    reconcile_partial_success: bool = False
    rollback_read_on_failure: bool = False
    transport_base_url: Optional[str] = None
    transport_timeout: float = Field(default=30.0, gt=0)
    transport_retry_enabled: bool = False
    transport_max_retries: int = Field(default=3, ge=0)
    user_id: Optional[str] = None
    connection_id: Optional[str] = None
    log_level: str = "INFO"

    @property
    def effective_row_height(self) -> int:
        """Row height for the current density."""
        return self.compact_row_height if self.compact else self.row_height

