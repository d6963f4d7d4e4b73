from __future__ import annotations

from pydantic import BaseModel


class DomainResponse(BaseModel):
    id: int
    title: str
    subtitle: str
    description: str
    icon: str
