from typing import Any, Optional
from fastapi import APIRouter, Body, Depends, Request, status
from sqlmodel import Session

from ..auth import get_current_user
from ..db import get_session
from ..email import Mailer, get_mailer
from ..models import User
from ..serializers import (
    sanitize_change_order,
    sanitize_client_profile,
    sanitize_link,
    sanitize_project,
    serialize_change_order,
    serialize_recipient,
)
from ..services.change_orders import ChangeOrderService
from ..storage import ObjectStore, get_object_store

router = APIRouter()

def get_change_order_service(
    session: Session = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
    store: ObjectStore = Depends(get_object_store),
) -> ChangeOrderService:
    return ChangeOrderService(session, mailer, store)

def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None

@router.post("/change-orders", status_code=status.HTTP_201_CREATED)
def create_change_order(
    body: Any = Body(default=None),
    user: User = Depends(get_current_user),
    service: ChangeOrderService = Depends(get_change_order_service),
):
    result = service.create(user, body)
    response = {
        "changeOrder": serialize_change_order(result.change_order),
        "recipients": [serialize_recipient(r) for r in result.recipients],
    }
    if result.email_warnings:
        response["emailWarnings"] = result.email_warnings
    return response

@router.get("/projects/{project_id}/change-orders")
def list_change_orders(
    project_id: str,
    user: User = Depends(get_current_user),
    service: ChangeOrderService = Depends(get_change_order_service),
):
    return {"changeOrders": [serialize_change_order(co) for co in service.list_for_project(project_id, user)]}

@router.post("/change-orders/send")
def send_change_order(
    request: Request,
    body: Any = Body(default=None),
    user: User = Depends(get_current_user),
    service: ChangeOrderService = Depends(get_change_order_service),
):
    result = service.send(user, body, str(request.base_url))
    return {
        "success": True,
        "changeOrder": serialize_change_order(result.change_order),
        "respondUrl": result.respond_url,
        "clientEmail": result.client_email,
    }

@router.get("/change-orders/verify")
def verify_change_order_link(
    token: Optional[str] = None,
    service: ChangeOrderService = Depends(get_change_order_service),
):
    bundle = service.verify(token)
    return {
        "link": sanitize_link(bundle.link),
        "changeOrder": sanitize_change_order(bundle.change_order),
        "project": sanitize_project(bundle.project),
        "clientProfile": sanitize_client_profile(bundle.client_profile),
    }

@router.post("/change-orders/respond")
def respond_to_change_order(
    request: Request,
    body: Any = Body(default=None),
    service: ChangeOrderService = Depends(get_change_order_service),
):
    result = service.respond(body, _client_ip(request))
    response = {"success": True}
    if result.email_warning:
        response["emailWarning"] = result.email_warning
    return response

@router.post("/change-orders/delete")
def delete_change_order(
    body: Any = Body(default=None),
    user: User = Depends(get_current_user),
    service: ChangeOrderService = Depends(get_change_order_service),
):
    service.delete(user, body)
    return {"success": True}

@router.post("/change-orders/recipients/respond")
def respond_as_recipient(
    body: Any = Body(default=None),
    service: ChangeOrderService = Depends(get_change_order_service),
):
    recipient = service.respond_as_recipient(body)
    return {"success": True, "recipient": serialize_recipient(recipient)}

@router.post("/change-orders/{change_order_id}/status")
def update_change_order_status(
    change_order_id: str,
    body: Any = Body(default=None),
    user: User = Depends(get_current_user),
    service: ChangeOrderService = Depends(get_change_order_service),
):
    change_order = service.update_status(change_order_id, user, body)
    return {"changeOrder": serialize_change_order(change_order)}
