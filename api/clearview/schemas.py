from datetime import date
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from typing import List, Optional

from .enums import ChangeOrderStatus, ClientDecision, MemberRole, RecipientAction
from .errors import ValidationError


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SessionCreate(CamelModel):
    email: EmailStr
    full_name: Optional[str] = Field(default=None, alias="fullName")

class InviteCreate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    email: EmailStr
    name: str = Field(min_length=1)
    role: MemberRole = MemberRole.viewer

class ProjectCreate(CamelModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    name: str = Field(min_length=1)
    reference_id: Optional[str] = Field(default=None, alias="referenceId")
    color: Optional[str] = None
    address: Optional[str] = None
    manager: Optional[str] = None
    start_date: Optional[date] = Field(default=None, alias="startDate")
    end_date: Optional[date] = Field(default=None, alias="endDate")
    cost: Optional[float] = None

class ClientProfileUpdate(CamelModel):
    company_name: Optional[str] = Field(default=None, alias="companyName")
    contact_name: Optional[str] = Field(default=None, alias="contactName")
    contact_email: Optional[EmailStr] = Field(default=None, alias="contactEmail")
    contact_phone: Optional[str] = Field(default=None, alias="contactPhone")
    address: Optional[str] = None

class LineItem(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    impact_days: float = Field(default=0, alias="impactDays")
    cost: float = 0

class RecipientInput(BaseModel):
    email: EmailStr
    name: Optional[str] = None

class ChangeOrderCreate(CamelModel):
    project_id: str = Field(alias="projectId", min_length=1)
    subject: str
    description: str = ""
    amount: Optional[float] = None
    due_date: Optional[date] = Field(default=None, alias="dueDate")
    recipient_name: Optional[str] = Field(default=None, alias="recipientName")
    recipient_email: Optional[EmailStr] = Field(default=None, alias="recipientEmail")
    line_items: List[LineItem] = Field(default_factory=list, alias="lineItems")
    recipients: List[RecipientInput] = Field(default_factory=list)

    @field_validator("subject")
    @classmethod
    def subject_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Change orders must include a title.")
        return value

class ChangeOrderSend(CamelModel):
    change_order_id: str = Field(alias="changeOrderId", min_length=1)
    email: Optional[str] = None

class ChangeOrderDelete(CamelModel):
    change_order_id: str = Field(alias="changeOrderId", min_length=1)

class ChangeOrderStatusUpdate(CamelModel):
    status: ChangeOrderStatus
    notes: Optional[str] = None
    override: bool = False

class ChangeOrderRespond(CamelModel):
    token: str = Field(min_length=1)
    decision: ClientDecision
    notes: Optional[str] = None
    signed_name: str = Field(alias="signedName", min_length=1)
    signed_email: str = Field(alias="signedEmail", min_length=1)
    signature_image: Optional[str] = Field(default=None, alias="signatureImage")

class RecipientRespond(CamelModel):
    token: str = Field(min_length=1)
    action: RecipientAction
    note: Optional[str] = None
    signature: Optional[str] = None


def parse_payload(model, data, message: str = "Invalid request payload."):
    """Validate ``data`` against ``model``, raising the API's 400 error with per-field details."""
    try:
        return model.model_validate(data if data is not None else {})
    except PydanticValidationError as exc:
        raise ValidationError(message, details=validation_details(exc.errors())) from exc


def validation_details(errors) -> list:
    details = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        details.append({"path": ".".join(loc), "message": error.get("msg", "Invalid value")})
    return details
