"""Session precondition supplied by the authentication provider."""

from typing import Optional

from pydantic import BaseModel, Field


class Session(BaseModel):
    """Authenticated user identity and provider connection handle.

    Args:
        user_id: Identity of the signed-in user.
        connection_id: Handle of the mail provider connection.
    """

    user_id: Optional[str] = Field(default=None, description="Signed-in user identity")
    connection_id: Optional[str] = Field(default=None, description="Provider connection handle")

    @property
    def is_active(self) -> bool:
        """Both the user identity and the connection handle are present."""
        return bool(self.user_id) and bool(self.connection_id)
