"""
Page envelope shared by every paginated endpoint.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class PageMeta(BaseModel):
    """Serialized as ``{"total", "page", "perPage", "totalPages"}``."""

    total: int
    page: int
    per_page: int
    total_pages: int

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
