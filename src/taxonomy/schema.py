"""
Taxonomy Schema Models.

Typed records for the three taxonomy tables and the entries produced by an audit.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Term(BaseModel):
    """Row of the terms table: the taxonomy-agnostic tag/category identity."""

    model_config = ConfigDict(frozen=True)

    term_id: int = Field(..., description="Unique identifier")
    name: str = Field(..., description="Display name")
    slug: str = Field(..., description="URL slug")
    term_group: int = Field(default=0, description="Alias group")


class TermTaxonomy(BaseModel):
    """Row of the term_taxonomy table binding a term to one taxonomy."""

    model_config = ConfigDict(frozen=True)

    term_taxonomy_id: int = Field(..., description="Unique identifier")
    term_id: int = Field(..., description="Referenced term")
    taxonomy: str = Field(..., description="Taxonomy name (e.g. category, post_tag)")
    description: str = Field(default="", description="Term description in this taxonomy")
    parent: int = Field(default=0, description="Parent term_id, 0 for root")
    count: int = Field(default=0, description="Cached relationship count")


class TermRelationship(BaseModel):
    """Row of the term_relationships join table."""

    model_config = ConfigDict(frozen=True)

    object_id: int = Field(..., description="Content object (post) id")
    term_taxonomy_id: int = Field(..., description="Referenced term taxonomy row")
    term_order: int = Field(default=0, description="Sort order")


class IncorrectCount(BaseModel):
    """A term taxonomy row whose cached count disagrees with the relationship table."""

    model_config = ConfigDict(frozen=True)

    term_taxonomy: TermTaxonomy
    stored: int
    real: int

    @property
    def term_taxonomy_id(self) -> int:
        return self.term_taxonomy.term_taxonomy_id


class DuplicateGroup(BaseModel):
    """Terms sharing an identical name or slug."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., description="The shared name or slug")
    terms: list[Term] = Field(default_factory=list)

    @property
    def term_ids(self) -> list[int]:
        return [t.term_id for t in self.terms]

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "term_ids": self.term_ids}
