from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Authenticated principal with role permissions, resolved from the access token."""

    id: UUID
    role: str
    role_id: Optional[UUID] = None
    # {"attendance": {"create": true, "update": true, "scope": "own"}, ...}
    permissions: Dict[str, Dict[str, Any]] = {}
