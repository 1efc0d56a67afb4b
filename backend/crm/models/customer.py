"""
Pydantic models for customers and resume extraction output.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import AliasChoices, BaseModel, Field, field_validator


class CustomerStatus(str, Enum):
    LEAD = "lead"
    PROSPECT = "prospect"
    CUSTOMER = "customer"
    INACTIVE = "inactive"


class ExtractedResumeInfo(BaseModel):
    """
    Best-effort structured record returned by the language model.

    Every field is optional: the model may omit anything, and a failed
    extraction produces an instance with all fields unset. Unknown keys the
    model invents are dropped. camelCase names (firstName, lastName,
    workExperience) are accepted as well.
    """
    model_config = {"extra": "ignore"}

    firstname: Optional[str] = Field(None, validation_alias=AliasChoices("firstname", "firstName"))
    lastname: Optional[str] = Field(None, validation_alias=AliasChoices("lastname", "lastName"))
    email: Optional[str] = None
    phone: Optional[str] = None
    skills: List[Any] = []
    experience: List[Any] = Field([], validation_alias=AliasChoices("experience", "workExperience"))
    education: List[Any] = []
    summary: Optional[str] = None

    @field_validator("skills", "experience", "education", mode="before")
    @classmethod
    def none_to_list(cls, v):
        if v is None:
            return []
        if isinstance(v, (str, dict)):
            return [v]
        return v

    @field_validator("firstname", "lastname", "email", "phone", "summary", mode="before")
    @classmethod
    def scalar_to_str(cls, v):
        if isinstance(v, str):
            return v.strip() or None
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_defaults=True)


class CustomerPatch(BaseModel):
    """
    Fields an ingestion or send path wants to write onto a customer.

    Empty values (None, "", [], {}) mean "no information" and never replace a
    populated column.
    """
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    phone: Optional[str] = None
    resume_url: Optional[str] = None
    resume_data: Optional[Dict[str, Any]] = None

    def non_empty_fields(self) -> Dict[str, Any]:
        return {
            key: value
            for key, value in self.model_dump().items()
            if value not in (None, "", [], {})
        }


class Customer(BaseModel):
    """Full customers row from the database."""
    model_config = {"from_attributes": True, "extra": "ignore"}

    id: str
    firstname: str
    lastname: str
    email: str
    phone: str = ""
    status: CustomerStatus = CustomerStatus.LEAD
    source: Optional[str] = None
    notes: Optional[str] = None
    resume_url: Optional[str] = None
    resume_data: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ResolvedCustomer(BaseModel):
    """Result of a find-or-create: the persisted row and whether it is new."""
    customer: Customer
    created: bool
