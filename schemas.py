"""
Database Schemas for the civic complaint service

Each Pydantic model represents a MongoDB collection.
Collection name = lowercase plural of class name (User -> "users", Complaint -> "complaints").
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"
    PARTNER = "partner"

    @classmethod
    def parse(cls, value) -> "Role":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower().replace("-", "").replace("_", "").replace(" ", "")
        for role in cls:
            if role.value == text:
                return role
        raise ValueError(f"Unknown role: {value!r}")


class Category(str, Enum):
    HYGIENE = "Hygiene"
    ROADS = "Roads"
    ELECTRICITY = "Electricity"
    WATER = "Water"
    OTHER = "Other"
    PENDING = "Pending Classification"

    @classmethod
    def parse(cls, value) -> "Category":
        """Accept canonical names, any casing, and intent labels such as ``category.roads``."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        if text.startswith("category."):
            text = text[len("category."):]
        for category in cls:
            if category.value.lower() == text:
                return category
        raise ValueError(f"Unknown category: {value!r}")

    @classmethod
    def routable(cls) -> List["Category"]:
        """Categories a partner can service."""
        return [c for c in cls if c is not cls.PENDING]


# Spellings seen in older clients and stored documents.
_LEGACY_STATUS = {
    "in process": "In Progress",
    "inprogress": "In Progress",
    "accepted": "Admin Accepted",
    "adminaccepted": "Admin Accepted",
}


class Status(str, Enum):
    PENDING = "Pending"
    ADMIN_ACCEPTED = "Admin Accepted"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    REJECTED = "Rejected"

    @classmethod
    def parse(cls, value) -> "Status":
        if isinstance(value, cls):
            return value
        text = " ".join(str(value or "").split()).lower()
        text = _LEGACY_STATUS.get(text, _LEGACY_STATUS.get(text.replace(" ", ""), text)).lower()
        for status in cls:
            if status.value.lower() == text:
                return status
        raise ValueError(f"Unknown status: {value!r}")

    @property
    def is_terminal(self) -> bool:
        return self in (Status.RESOLVED, Status.REJECTED)


ACTIVE_STATUSES = (Status.ASSIGNED, Status.IN_PROGRESS)
UNASSIGNED_STATUSES = (Status.PENDING, Status.ADMIN_ACCEPTED)


class _Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, use_enum_values=True, validate_default=True)


class User(_Document):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., description="Hashed password")
    anonymousName: Optional[str] = Field(None, description="Public display name")
    role: Role = Field(Role.USER, description="Role of the account")
    isBlocked: bool = Field(False, description="Blocked accounts fail every guarded request")
    category: Optional[Category] = Field(None, description="Serviced category, partners only")
    zone: Optional[ObjectId] = Field(None, description="Home zone")


class Zone(_Document):
    name: str = Field(..., description="Unique zone name, e.g. 'Ward 12'")
    description: Optional[str] = Field(None)


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class Complaint(_Document):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    image: Optional[str] = Field(None, description="Image URL if any")
    status: Status = Field(Status.PENDING)
    author: ObjectId = Field(..., description="Reporting user")
    assignedTo: Optional[ObjectId] = Field(None, description="Assigned partner")
    zone: Optional[ObjectId] = Field(None, description="Routing zone")
    address: Optional[str] = Field(None, description="Nearest address or landmark")
    coordinates: Optional[Coordinates] = Field(None)
    category: Category = Field(Category.PENDING)
    upvotes: List[ObjectId] = Field(default_factory=list)
    upvoteCount: int = Field(0, ge=0)
    comments: List[ObjectId] = Field(default_factory=list)
    strikes: int = Field(0, ge=0)

    rejectionReason: Optional[str] = None
    tentativeDate: Optional[datetime] = None
    assignedWorkers: Optional[str] = None
    resolutionImage: Optional[str] = None
    partnerFeedback: Optional[str] = None
    resolvedAt: Optional[datetime] = None


class Comment(_Document):
    text: str = Field(..., min_length=1)
    author: ObjectId
    complaint: ObjectId
