import json
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional, Dict, Any

from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
import uvicorn

from did_health import DIDService
from did_health.config import settings
from did_health.did_manager import Principal, Role
from did_health.errors import (
    DIDHealthError,
    DuplicateError,
    Forbidden,
    InvalidCredentialType,
    MalformedCredentialError,
    NotFound,
    StoreUnavailable,
    ValidationError,
)

from .auth import Unauthorized, create_token, decode_token

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

REGISTRABLE_ROLES = (Role.PATIENT.value, Role.DOCTOR.value)

STATUS_CODES = {
    Unauthorized: 401,
    Forbidden: 403,
    NotFound: 404,
    InvalidCredentialType: 400,
    ValidationError: 400,
    MalformedCredentialError: 400,
    DuplicateError: 409,
    StoreUnavailable: 503,
}

did_service: Optional[DIDService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global did_service
    logger.info("Starting DID Healthcare API...")
    did_service = DIDService(settings)
    yield
    logger.info("Shutting down...")


app = FastAPI(title="DID Healthcare API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DIDHealthError)
async def did_health_error_handler(request: Request, exc: DIDHealthError):
    status_code = next((code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# ============================================================
# REQUEST MODELS
# ============================================================

class RegisterRequest(BaseModel):
    name: str = ""
    email: str = ""
    role: str = ""
    specialty: Optional[str] = None
    licenseNumber: Optional[str] = None


class LoginRequest(BaseModel):
    didIdentifier: str = ""


class IssueRequest(BaseModel):
    patientDid: str = ""
    credentialType: str = ""
    customData: Optional[Dict[str, Any]] = None


# ============================================================
# AUTH
# ============================================================

bearer = HTTPBearer(auto_error=False)


def current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)
) -> Principal:
    payload = decode_token(credentials.credentials if credentials else "", did_service.settings)
    try:
        return did_service.get_principal(payload.get("sub", ""))
    except NotFound:
        raise Unauthorized("Invalid token") from None


def _session(principal: Principal, message: str) -> Dict[str, Any]:
    return {
        "message": message,
        "user": principal.to_dict(),
        "didIdentifier": principal.did_identifier,
        "token": create_token(principal, did_service.settings),
        "didDocument": did_service.did_document(principal.did_identifier)["didDocument"]
    }


@app.post("/api/auth/did-register")
async def did_register(body: RegisterRequest):
    """Register a patient or doctor and create their DID"""
    if body.role and body.role not in REGISTRABLE_ROLES:
        raise ValidationError("Invalid role. Must be patient or doctor")

    registration = did_service.register(
        body.name,
        body.email,
        body.role,
        specialty=body.specialty,
        license_number=body.licenseNumber
    )
    return _session(registration.principal, "DID registration successful")


@app.post("/api/auth/did-login")
async def did_login(body: LoginRequest):
    try:
        principal = did_service.login(body.didIdentifier)
    except NotFound as e:
        raise Unauthorized(e.message) from None
    return _session(principal, "DID authentication successful")


@app.get("/api/me")
async def me(principal: Principal = Depends(current_principal)):
    profile = did_service.did_document(principal.did_identifier)
    return {**principal.to_dict(), "didDocument": profile["didDocument"]}


@app.get("/api/dashboard/stats")
async def dashboard_stats(principal: Principal = Depends(current_principal)):
    return await did_service.dashboard_stats(principal)


# ============================================================
# CREDENTIAL ENDPOINTS
# ============================================================

@app.get("/api/credentials")
async def list_credentials(principal: Principal = Depends(current_principal)):
    records = await did_service.credentials_for(principal)
    return [record.to_dict() for record in records]


@app.post("/api/credentials/issue")
async def issue_credential(body: IssueRequest, principal: Principal = Depends(current_principal)):
    """
    Issue a Verifiable Credential to a patient

    Only doctors may issue. Without customData the type's sample claims are used.
    """
    issued = await did_service.issue_credential(
        principal,
        body.patientDid,
        body.credentialType,
        body.customData
    )
    return issued.to_dict()


@app.post("/api/credentials/verify")
async def verify_credential(request: Request):
    """
    Verify a Verifiable Credential

    Public endpoint. Body: {"vcData": <VC object or JSON string>}
    """
    # vcData may arrive JSON-encoded inside a string, which inflates it
    limit = did_service.settings.MAX_VC_PAYLOAD_BYTES * 2
    raw = await request.body()
    if len(raw) > limit:
        raise MalformedCredentialError(f"Request body exceeds {limit} bytes")

    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise MalformedCredentialError("Invalid VC JSON format") from None

    vc_data = body.get("vcData") if isinstance(body, dict) else None
    if not vc_data:
        raise ValidationError("VC data is required")

    report = await did_service.verify_credential(vc_data)
    return {
        "message": "Credential verification completed",
        "verification": report.to_dict(),
        "vcData": vc_data
    }


@app.get("/api/credentials/{credential_id}")
async def get_credential(credential_id: str, principal: Principal = Depends(current_principal)):
    record = await did_service.get_credential(credential_id, principal)
    return record.to_dict()


@app.delete("/api/credentials/{credential_id}/revoke")
async def revoke_credential(credential_id: str, principal: Principal = Depends(current_principal)):
    record = await did_service.revoke_credential(credential_id, principal)
    return {"message": "Credential revoked successfully", "credential": record.to_dict()}


# ============================================================
# DID ENDPOINTS
# ============================================================

@app.get("/api/did/profile/{did}")
async def did_profile(did: str):
    """Public DID Document of a registered principal"""
    return did_service.did_document(did)


@app.get("/api/did/info")
async def get_did_info():
    """Get DID system information"""
    return {
        "available": True,
        "statistics": await did_service.statistics()
    }


# ============================================================
# NOTIFICATIONS
# ============================================================

@app.get("/api/notifications")
async def list_notifications(principal: Principal = Depends(current_principal)):
    return [n.to_dict() for n in did_service.notifications.inbox(principal.id)]


@app.patch("/api/notifications/{notification_id}/read")
async def mark_notification_read(notification_id: str, principal: Principal = Depends(current_principal)):
    notification = did_service.notifications.mark_read(notification_id, principal.id)
    return {"message": "Notification marked as read", "notification": notification.to_dict()}


async def _forward(queue: asyncio.Queue, websocket: WebSocket) -> None:
    while True:
        event = await queue.get()
        await websocket.send_json(event)


@app.websocket("/ws")
async def notifications_socket(websocket: WebSocket, token: str = ""):
    """Live notification events for the token's principal"""
    try:
        payload = decode_token(token, did_service.settings)
        principal = did_service.get_principal(payload.get("sub", ""))
    except DIDHealthError as e:
        logger.info("WebSocket rejected: %s", e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    queue = did_service.notifications.subscribe(principal.id)
    logger.info("WebSocket client connected for user: %s", principal.id)

    await websocket.send_json({"event": "connected", "userId": principal.id})
    sender = asyncio.create_task(_forward(queue, websocket))
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected for user: %s", principal.id)
    finally:
        did_service.notifications.unsubscribe(principal.id, queue)
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.warning("Notification sender failed for user: %s", principal.id, exc_info=True)


# ============================================================
# DEMO
# ============================================================

@app.get("/api/demo/sample-credentials")
async def sample_credentials():
    return did_service.sample_credentials()


if __name__ == "__main__":
    uvicorn.run("backend.api:app", host="0.0.0.0", port=8000)
