"""Pydantic schema for the acting user supplied by the auth collaborator."""
from typing import Optional
from pydantic import BaseModel


class CurrentUser(BaseModel):
    id: str
    email: Optional[str] = None
    role: Optional[str] = None
