from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Image / QR fields an update carries over from the stored row unless the
# caller names them explicitly (an explicit null clears them).
PRESERVED_FIELDS = ("qr_code_data", "image_url", "image_base64", "image_alt")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MappingCreate(CamelModel):
    path: str
    target: str
    name: str | None = None
    expiry: datetime | str | None = None
    enabled: bool = True
    is_wechat: bool = False
    qr_code_data: str | None = None
    image_url: str | None = None
    image_base64: str | None = None
    image_alt: str | None = None

    @field_validator("name", "expiry", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class MappingUpdate(MappingCreate):
    """
    Replacement record for update_mapping.

    Fields in PRESERVED_FIELDS are three-state: absent (keep stored value),
    explicit null (clear), or a value. Presence is read from model_fields_set.
    """

    path: str = Field(alias="newPath")

    def is_specified(self, field_name: str) -> bool:
        return field_name in self.model_fields_set


class MappingUpdateRequest(MappingUpdate):
    original_path: str


class MappingDeleteRequest(CamelModel):
    path: str


class MappingOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    path: str
    target: str
    name: str | None
    expiry: datetime | None
    enabled: bool
    created_at: datetime | None
    is_wechat: bool
    qr_code_data: str | None
    image_url: str | None
    image_base64: str | None
    image_alt: str | None


class MappingPage(CamelModel):
    records: list[MappingOut]
    total: int
    page: int
    page_size: int
    total_pages: int


class ExpiryReport(CamelModel):
    expiring: list[MappingOut]
    expired: list[MappingOut]


class ResolveState(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"


class Resolution(CamelModel):
    state: ResolveState
    target: str | None = None
    mapping: MappingOut | None = None


class SweepResponse(CamelModel):
    deleted: int


class MigrationReport(CamelModel):
    imported: int = 0
    skipped: int = 0
    interrupted: bool = False


class LoginRequest(BaseModel):
    password: str = ""


class UploadedImage(CamelModel):
    base64: str
    data_url: str
    file_name: str | None
    mime_type: str
