from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LinkEntry(BaseModel):
    slug: str
    source_url: str
    display_name: Optional[str] = None  # Filename for Content-Disposition; slug when unset

    @property
    def filename(self) -> str:
        return self.display_name or self.slug


class StoredLink(BaseModel):
    """Value persisted under a slug in the links hash."""

    source_url: str
    display_name: Optional[str] = None


class GenerateRequest(BaseModel):
    # Field names mirror the admin form inputs
    model_config = ConfigDict(populate_by_name=True)

    token: Optional[str] = None
    original_url: str = Field(alias="originalUrl")
    movie_name: str = Field(alias="movieName")
    link_type: Literal["download", "play", "stream"] = Field(default="download", alias="linkType")

    @field_validator("original_url", "movie_name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v


class GenerateResponse(BaseModel):
    slug: str
    link: str


class FetchTitleRequest(BaseModel):
    url: str


class FetchTitleResponse(BaseModel):
    title: str
