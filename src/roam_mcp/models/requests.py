"""Request and configuration models."""

from pydantic import BaseModel, Field, SecretStr, model_validator


class APIConfiguration(BaseModel):
    """Connection settings handed to the Roam client."""

    api_token: SecretStr = Field(..., description="Roam graph API token")
    graph_name: str = Field(..., description="Name of the Roam graph")
    base_url: str = Field(default="https://api.roamresearch.com", description="Backend API base URL")
    timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")


class HierarchyRequest(BaseModel):
    """Parameters of an indented hierarchy search.

    Exactly one of ``parent_uid`` (descendant mode) or ``child_uid``
    (ancestor mode) must be supplied.
    """

    parent_uid: str | None = None
    child_uid: str | None = None
    page_title_uid: str | None = None
    max_depth: int = 1
    part: int = 1

    @model_validator(mode="after")
    def _exactly_one_anchor(self) -> "HierarchyRequest":
        if not self.parent_uid and not self.child_uid:
            raise ValueError("Either parent_uid or child_uid must be provided")
        if self.parent_uid and self.child_uid:
            raise ValueError("Provide only one of parent_uid or child_uid, not both")
        return self


class PageContentLine(BaseModel):
    """One line of content for create_page; level 1 sits directly under the page."""

    text: str
    level: int = Field(default=1, ge=1)
