"""Book catalog records as seen by the retrieval pipeline."""

from typing import Optional
from uuid import UUID

from pydantic import Field

from booklib.models.base import ApiModel


class BookSource(ApiModel):
    """Fields of a catalog book used to compute its embedding."""

    id: UUID
    title: str
    author: str
    category: Optional[str] = None
    description: str = ""


class RetrievedDocument(ApiModel):
    """A book returned by vector search.

    This is the only book shape that flows through context assembly,
    prompting and citation storage.
    """

    id: UUID
    title: str
    author: str
    category: Optional[str] = None
    description: str = ""
    publish_year: Optional[int] = None
    cover_image: Optional[str] = None
    score: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class BackfillReport(ApiModel):
    """Outcome of an embedding backfill run."""

    succeeded: int = 0
    failed: int = 0
    total: int = 0
