from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel


class UserUpdate(BaseModel):
    role: Optional[Literal["student", "tutor", "admin"]] = None
    status: Optional[Literal["active", "inactive", "suspended"]] = None
