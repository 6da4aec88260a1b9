from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

ListingCategory = Literal[
    "chatbots",
    "image",
    "code",
    "productivity",
    "voice",
    "writing",
    "research",
    "agents",
    "video",
    "audio",
    "data-analysis",
    "language",
    "design",
    "automation",
    "healthcare",
    "education",
    "marketing",
    "finance",
]
ListingPricing = Literal["free", "freemium", "paid"]
ListingCapability = Literal["text", "image", "audio", "video", "code", "agent"]
ListingStatus = Literal["pending", "approved", "rejected"]
ListingCategoryFilter = Literal[ListingCategory, "all"]
ListingPricingFilter = Literal[ListingPricing, "all"]
ListingStatusFilter = Literal[ListingStatus, "all"]

Tag = Annotated[str, StringConstraints(strip_whitespace=True, max_length=30)]
BestForItem = Annotated[str, StringConstraints(strip_whitespace=True, max_length=50)]
Feature = Annotated[str, StringConstraints(strip_whitespace=True, max_length=100)]
ExamplePrompt = Annotated[str, StringConstraints(strip_whitespace=True, max_length=200)]

EDITABLE_FIELDS = (
    "name",
    "short_description",
    "long_description",
    "category",
    "tags",
    "provider",
    "pricing",
    "capabilities",
    "is_api_available",
    "is_open_source",
    "model_type",
    "external_url",
    "best_for",
    "features",
    "example_prompts",
)


class ListingPayload(BaseModel):
    """Fields an owner may set when submitting or editing a listing."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid", protected_namespaces=())

    name: str = Field(min_length=1, max_length=100)
    short_description: str = Field(min_length=1, max_length=200)
    long_description: str | None = Field(default=None, max_length=2000)
    category: ListingCategory
    tags: list[Tag] = Field(default_factory=list)
    provider: str = Field(min_length=1, max_length=50)
    pricing: ListingPricing = "freemium"
    capabilities: list[ListingCapability] = Field(default_factory=list)
    is_api_available: bool = False
    is_open_source: bool = False
    model_type: str | None = Field(default=None, max_length=50)
    external_url: str | None = Field(default=None, pattern=r"^https?://.+")
    best_for: list[BestForItem] = Field(default_factory=list)
    features: list[Feature] = Field(default_factory=list)
    example_prompts: list[ExamplePrompt] = Field(default_factory=list)

    @field_validator("long_description", "model_type", "external_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class OwnerOut(BaseModel):
    first_name: str | None = None
    last_name: str | None = None


class OwnerAdminOut(OwnerOut):
    id: str
    email: str | None = None


class _ListingOutBase(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    id: str
    slug: str
    name: str
    short_description: str
    long_description: str | None = None
    category: ListingCategory
    tags: list[str] = Field(default_factory=list)
    provider: str
    pricing: ListingPricing = "freemium"
    capabilities: list[ListingCapability] = Field(default_factory=list)
    is_api_available: bool = False
    is_open_source: bool = False
    model_type: str | None = None
    external_url: str | None = None
    best_for: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)
    example_prompts: list[str] = Field(default_factory=list)
    rating: float = 0
    reviews_count: int = 0
    installs_count: int = 0
    trending_score: float = 0
    featured: bool = False
    status: ListingStatus = "pending"
    created_at: datetime
    updated_at: datetime


class ListingPublicOut(_ListingOutBase):
    owner: OwnerOut | None = None


class ListingOwnerOut(_ListingOutBase):
    pass


class ListingAdminOut(_ListingOutBase):
    rejection_reason: str | None = None
    uploaded_by: str
    owner: OwnerAdminOut | None = None


class PageInfoOut(BaseModel):
    current_page: int
    total_pages: int
    total_models: int
    has_next: bool
    has_prev: bool


class ListingPageOut(BaseModel):
    items: list[ListingPublicOut] = Field(default_factory=list)
    pagination: PageInfoOut


class AdminListingPageOut(BaseModel):
    items: list[ListingAdminOut] = Field(default_factory=list)
    pagination: PageInfoOut


class OwnerListingsOut(BaseModel):
    items: list[ListingOwnerOut] = Field(default_factory=list)
    count: int


class ListingStatusPatchRequest(BaseModel):
    status: str
    rejection_reason: str | None = None


class ReviewEventOut(BaseModel):
    id: int
    listing_id: str
    event_type: Literal["status_changed", "resubmitted"]
    from_status: ListingStatus
    to_status: ListingStatus
    reason: str | None = None
    actor_id: str | None = None
    created_at: datetime
