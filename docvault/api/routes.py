"""
DocVault HTTP routes.

Handlers translate HTTP into service calls and nothing else: identity,
policy, storage and persistence all live in the services. DocVaultError
subclasses raised here are turned into `{"error": ...}` bodies by the
handlers installed in docvault.api.app.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from docvault.documents.models import UploadedFile
from docvault.engine.errors import DocVaultConfigError, DocVaultSecurityError, DocVaultSessionError
from docvault.security.identity import Identity, RequestContext, Role
from docvault.security.rate_limit import client_address

router = APIRouter(prefix="/api")

ADMIN_COOKIE_MAX_AGE = 60 * 60 * 24
MANAGER_COOKIE_MAX_AGE = 60 * 60 * 24 * 7


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class MutationRequest(_Body):
    performed_by: Optional[int] = Field(default=None, alias="performedBy")
    title: Optional[str] = None


class ImageUrlRequest(_Body):
    file_name: Optional[str] = Field(default=None, alias="fileName")


class ManagerRegisterRequest(_Body):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class ManagerLoginRequest(_Body):
    email: Optional[str] = None
    password: Optional[str] = None


class AdminLoginRequest(_Body):
    password: Optional[str] = None


class ApproveManagerRequest(_Body):
    application_id: Optional[Any] = Field(default=None, alias="applicationId")
    action: Optional[str] = None
    admin_id: Optional[Any] = Field(default=None, alias="adminId")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def services(request: Request):
    return request.app.state.services


def request_context(request: Request) -> RequestContext:
    return RequestContext(
        headers=dict(request.headers),
        cookies=dict(request.cookies),
        client_ip=client_address(request.headers, request.client.host if request.client else None),
    )


def require_admin(request: Request, svc=Depends(services)) -> None:
    """Admin routes need the cookie set by /api/admin/login."""
    if request.cookies.get(svc.config.security.admin_auth_cookie) != "true":
        raise DocVaultSessionError("Unauthorized", object_ref=request.url.path)


def require_manager_cookie(request: Request, svc=Depends(services)) -> None:
    if request.cookies.get(svc.config.security.manager_auth_cookie) != "true":
        raise DocVaultSessionError("Unauthorized", object_ref=request.url.path)


def current_manager(ctx: RequestContext = Depends(request_context), svc=Depends(services)) -> Identity:
    """The approved MANAGER behind the manager cookie pair."""
    manager = svc.resolver.resolve_manager_session(ctx)
    if not isinstance(manager, Identity):
        raise DocVaultSessionError("Manager not authenticated")
    if manager.role != Role.MANAGER or not manager.is_approved:
        raise DocVaultSecurityError(
            "Not an approved manager", user_id=manager.id, reason="ROLE_NOT_PERMITTED"
        )
    return manager


def _read_upload(document: Optional[UploadFile], max_bytes: int) -> Optional[UploadedFile]:
    if document is None or not document.filename:
        return None
    # One byte past the ceiling is enough for the validator to reject it.
    data = document.file.read(max_bytes + 1)
    return UploadedFile(
        filename=document.filename,
        content_type=document.content_type or "application/octet-stream",
        data=data,
    )


def _secure_cookies(svc) -> bool:
    return svc.config.environment == "prod"


# ---------------------------------------------------------------------------
# File delivery
# ---------------------------------------------------------------------------

@router.get("/secure-file/{file_name}")
def secure_file(file_name: str, ctx: RequestContext = Depends(request_context), svc=Depends(services)):
    result = svc.delivery.serve(file_name, ctx)
    return Response(content=result.body, status_code=result.status_code, headers=result.headers)


# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------

@router.post("/upload")
def upload(
    document: Optional[UploadFile] = File(None),
    ctx: RequestContext = Depends(request_context),
    svc=Depends(services),
):
    caller = svc.resolver.resolve(ctx)
    file = _read_upload(document, svc.config.uploads.max_upload_bytes)
    receipt = svc.documents.upload_for_self(caller, file)
    return {
        "message": "Upload success",
        "uploadId": receipt.upload_id,
        "fileName": receipt.file_name,
        "fileSize": receipt.file_size,
        "fileType": receipt.file_kind.value,
    }


@router.post("/manager/upload", dependencies=[Depends(require_manager_cookie)])
def manager_upload(
    document: Optional[UploadFile] = File(None),
    customer_email: Optional[str] = Form(None, alias="customerEmail"),
    ctx: RequestContext = Depends(request_context),
    svc=Depends(services),
):
    manager = svc.resolver.resolve_manager_session(ctx)
    file = _read_upload(document, svc.config.uploads.max_upload_bytes)
    receipt = svc.documents.upload_for_customer(manager, customer_email, file)
    return {
        "message": "Upload success",
        "uploadId": receipt.upload_id,
        "fileName": receipt.file_name,
        "fileSize": receipt.file_size,
        "fileType": receipt.file_kind.value,
        "customerEmail": receipt.owner_email,
    }


@router.get("/uploads")
def list_uploads(ctx: RequestContext = Depends(request_context), svc=Depends(services)):
    return svc.documents.list_uploads(svc.resolver.resolve(ctx))


@router.delete("/uploads/{upload_id}")
def delete_upload(upload_id: int, body: Optional[MutationRequest] = None, svc=Depends(services)):
    performed_by = body.performed_by if body else None
    return svc.documents.delete_upload(upload_id, performed_by)


@router.patch("/uploads/{upload_id}")
def update_upload_title(upload_id: int, body: MutationRequest, svc=Depends(services)):
    return svc.documents.update_title(upload_id, body.title, body.performed_by)


@router.post("/get-image-url")
def get_image_url(body: ImageUrlRequest, ctx: RequestContext = Depends(request_context), svc=Depends(services)):
    caller = svc.resolver.resolve(ctx)
    return {"signedUrl": svc.documents.view_link(caller, body.file_name)}


# ---------------------------------------------------------------------------
# Managers
# ---------------------------------------------------------------------------

@router.post("/manager/register")
def manager_register(body: ManagerRegisterRequest, svc=Depends(services)):
    svc.accounts.register_manager(body.name, body.email, body.password)
    return {
        "success": True,
        "message": "Manager application submitted successfully. Waiting for admin approval.",
    }


@router.post("/manager/login")
def manager_login(body: ManagerLoginRequest, svc=Depends(services)):
    identity = svc.accounts.authenticate_manager(body.email, body.password)
    cfg = svc.config.security
    response = JSONResponse({"success": True, "message": "Manager login successful"})
    for name, value in ((cfg.manager_auth_cookie, "true"), (cfg.manager_email_cookie, identity.email)):
        response.set_cookie(
            name, value, max_age=MANAGER_COOKIE_MAX_AGE, httponly=True,
            secure=_secure_cookies(svc), samesite="strict", path="/",
        )
    return response


@router.post("/manager/logout")
def manager_logout(svc=Depends(services)):
    cfg = svc.config.security
    response = JSONResponse({"success": True, "message": "Logged out"})
    response.delete_cookie(cfg.manager_auth_cookie, path="/")
    response.delete_cookie(cfg.manager_email_cookie, path="/")
    return response


@router.get("/manager/check-auth")
def manager_check_auth(manager: Identity = Depends(current_manager)):
    return {"managerId": manager.id, "managerName": manager.name, "managerEmail": manager.email}


@router.get("/manager/users", dependencies=[Depends(current_manager)])
def manager_users(svc=Depends(services)):
    """Customers and admins with their uploads; managers are left out."""
    return {"users": svc.documents.list_users_with_uploads(include_managers=False)}


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

@router.post("/admin/login")
def admin_login(body: AdminLoginRequest, svc=Depends(services)):
    try:
        ok = svc.accounts.verify_admin_password(body.password)
    except DocVaultConfigError:
        return JSONResponse({"error": "Admin access not configured"}, status_code=500)
    if not ok:
        return JSONResponse({"error": "Invalid admin password"}, status_code=401)

    response = JSONResponse({"message": "Admin login successful", "adminId": svc.accounts.admin_user_id()})
    response.set_cookie(
        svc.config.security.admin_auth_cookie, "true", max_age=ADMIN_COOKIE_MAX_AGE,
        httponly=True, secure=_secure_cookies(svc), samesite="strict", path="/",
    )
    return response


@router.get("/admin/pending-managers", dependencies=[Depends(require_admin)])
def pending_managers(svc=Depends(services)):
    return {"pendingManagers": svc.accounts.list_pending_managers()}


@router.post("/admin/approve-manager", dependencies=[Depends(require_admin)])
def approve_manager(body: ApproveManagerRequest, svc=Depends(services)):
    return svc.accounts.decide_application(body.application_id, body.action, body.admin_id)


@router.get("/admin/activity-logs", dependencies=[Depends(require_admin)])
def activity_logs(svc=Depends(services)):
    return {"activityLogs": svc.recorder.recent()}


@router.get("/admin/manager-activity/{manager_id}", dependencies=[Depends(require_admin)])
def manager_activity(manager_id: int, svc=Depends(services)):
    return {"managerActivity": svc.recorder.for_user(manager_id)}


@router.get("/admin/manager-activity", dependencies=[Depends(require_admin)])
def all_manager_activity(svc=Depends(services)):
    return {"managerActivity": svc.recorder.manager_activity()}


@router.get("/admin/users", dependencies=[Depends(require_admin)])
def admin_users(svc=Depends(services)):
    return {"users": svc.documents.list_users_with_uploads()}


@router.get("/admin/user/{user_id}", dependencies=[Depends(require_admin)])
def admin_user(user_id: int, svc=Depends(services)):
    return svc.documents.get_user_uploads(user_id)
