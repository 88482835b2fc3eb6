"""Player data model."""

from typing import Optional
from pydantic import BaseModel


class Player(BaseModel):
    """Represents a player. The engine only ever looks at the id."""

    id: int
    nickname: Optional[str] = None
    name: Optional[str] = None
    lastname: Optional[str] = None
    image_url: Optional[str] = None
    auth_user_id: Optional[str] = None
