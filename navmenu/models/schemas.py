"""
Pydantic schemas
Request / response validation for the admin and public APIs
"""
from datetime import datetime
from typing import Optional, List, Dict, Any, Union
from pydantic import BaseModel, Field, field_validator, ConfigDict

from navmenu.models.menu import MenuTarget
from navmenu.services.visibility import as_utc


# ============== Auth Schemas ==============

class LoginRequest(BaseModel):
    username: str
    password: str


class AdminUserResponse(BaseModel):
    id: int
    username: str
    name: Optional[str] = None
    is_active: bool
    model_config = ConfigDict(from_attributes=True)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: AdminUserResponse


# ============== Menu Schemas ==============

class MenuCreate(BaseModel):
    name: str = Field(..., max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    max_depth: Optional[int] = Field(None, ge=1)
    is_active: bool = True


class MenuUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    max_depth: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None


class MenuResponse(BaseModel):
    id: int
    name: str
    slug: str
    max_depth: int
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items_count: int = 0
    model_config = ConfigDict(from_attributes=True)


# ============== Menu Item Schemas ==============

class MenuItemBase(BaseModel):
    name: str = Field(..., max_length=255)
    custom_url: Optional[str] = Field(None, max_length=2048)
    resource_type: Optional[str] = Field(None, max_length=255)
    resource_id: Optional[int] = Field(None, ge=1)
    resource_slug: Optional[str] = Field(None, max_length=255)
    display_at: Optional[datetime] = None
    hide_at: Optional[datetime] = None
    icon: Optional[str] = Field(None, max_length=100)
    css_class: Optional[str] = Field(None, max_length=255)
    target: MenuTarget = MenuTarget.SELF
    is_active: bool = True

    @field_validator('display_at', 'hide_at')
    @classmethod
    def normalize_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive values are taken as UTC"""
        return as_utc(v)


class MenuItemCreate(MenuItemBase):
    menu_id: int
    parent_id: Optional[int] = None
    position: Optional[int] = Field(None, ge=0)


class MenuItemUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    custom_url: Optional[str] = Field(None, max_length=2048)
    resource_type: Optional[str] = Field(None, max_length=255)
    resource_id: Optional[int] = Field(None, ge=1)
    resource_slug: Optional[str] = Field(None, max_length=255)
    display_at: Optional[datetime] = None
    hide_at: Optional[datetime] = None
    icon: Optional[str] = Field(None, max_length=100)
    css_class: Optional[str] = Field(None, max_length=255)
    target: Optional[MenuTarget] = None
    is_active: Optional[bool] = None
    parent_id: Optional[int] = None
    position: Optional[int] = Field(None, ge=0)

    @field_validator('display_at', 'hide_at')
    @classmethod
    def normalize_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class MenuItemMove(BaseModel):
    parent_id: Optional[int] = None
    position: Optional[int] = Field(None, ge=0)


class MenuItemResponse(BaseModel):
    id: int
    menu_id: Optional[int] = None
    parent_id: Optional[int] = None
    name: str
    custom_url: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[int] = None
    resource_slug: Optional[str] = None
    resource_name: Optional[str] = None
    display_at: Optional[datetime] = None
    hide_at: Optional[datetime] = None
    icon: Optional[str] = None
    css_class: Optional[str] = None
    target: MenuTarget
    position: int
    is_active: bool
    depth: Optional[int] = None
    children: List["MenuItemResponse"] = []
    model_config = ConfigDict(from_attributes=True)


# ============== Structure Schemas ==============

class ReorderEntry(BaseModel):
    id: int
    parent_id: Optional[int] = None
    position: int = Field(..., ge=0)


class ReorderRequest(BaseModel):
    items: List[ReorderEntry]


class RebuildEntry(MenuItemBase):
    id: Optional[int] = None
    children: List["RebuildEntry"] = []


class RebuildRequest(BaseModel):
    menu_structure: List[RebuildEntry]


# ============== Resource Schemas ==============

class ResourceTypeResponse(BaseModel):
    name: str
    route_pattern: str
    supports_soft_delete: bool = False


class ResourceSearchResult(BaseModel):
    id: Union[int, str]
    name: Optional[str] = None
    slug: Optional[str] = None


# ============== Public Schemas ==============

class PublicMenuItem(BaseModel):
    id: int
    name: str
    url: Optional[str] = None
    target: str
    css_class: Optional[str] = None
    icon: Optional[str] = None
    children: List["PublicMenuItem"] = []


class PublicMenuResponse(BaseModel):
    slug: str
    name: str
    items: List[PublicMenuItem]
    timestamp: datetime


class MultiMenuResponse(BaseModel):
    menus: Dict[str, Dict[str, Any]]
    timestamp: datetime
