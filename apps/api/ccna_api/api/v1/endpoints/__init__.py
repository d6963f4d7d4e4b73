from __future__ import annotations

from ccna_api.api.v1.endpoints import learning, tutor

__all__ = ["learning", "tutor"]
