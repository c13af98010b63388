"""
ProofMark — FastAPI Backend
===========================
HTTP gateway to the ProofMark registry app on Algorand.

Reads come straight from algod. Writes are prepared here as unsigned
transactions for the authenticated account, signed by that account's wallet,
and relayed back through /api/transactions. The backend holds no keys.
"""

import asyncio
import contextlib
import functools
import logging
import os
from contextlib import asynccontextmanager
from typing import Literal, Optional, Union

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from backend.algorand import (
    RegistryClient,
    get_app_id,
    get_indexer_client,
    get_registry,
    record_to_dict,
    require_address,
)
from backend.audit import AuditFollower, get_db
from backend.auth import (
    AuthNotConfigured,
    ChallengeRequest,
    LoginRequest,
    consume_challenge,
    create_token,
    get_caller,
    issue_challenge,
    verify_signature,
)
from backend.errors import (
    AlreadyRegistered,
    InvalidArgument,
    InvalidProof,
    NotFound,
    RegistryError,
    TransactionRejected,
    Unauthorized,
)
from backend.proofs import parse_digest

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

# 422 is reserved for proofs the verifier rejected; malformed requests are 400.
ERROR_STATUS = {
    Unauthorized: 403,
    InvalidArgument: 400,
    AlreadyRegistered: 409,
    InvalidProof: 422,
    NotFound: 404,
    TransactionRejected: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    task: Optional[asyncio.Task] = None
    try:
        app_id = get_app_id()
    except ValueError as e:
        logger.warning(f"Audit follower not started: {e}")
    else:
        follower = AuditFollower(
            get_indexer_client(),
            app_id,
            start_round=int(os.getenv("AUDIT_START_ROUND", "0")),
            poll_seconds=float(os.getenv("AUDIT_POLL_SECONDS", "5")),
        )
        task = asyncio.create_task(follower.run())
        logger.info(f"Audit follower started for app {app_id}")
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


app = FastAPI(title="ProofMark API", version="1.0.0", docs_url="/docs", redoc_url="/redoc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RegistryError)
async def registry_exception_handler(request: Request, exc: RegistryError):
    status = ERROR_STATUS.get(type(exc), 400)
    logger.info(f"{request.method} {request.url.path} rejected: {exc.kind} ({exc.message})")
    return JSONResponse(status_code=status, content={"detail": exc.message, "error": exc.kind})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info(f"{request.method} {request.url.path} rejected: malformed request body")
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_errors(exc), "error": InvalidArgument.kind},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.method} {request.url}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc)},
        headers={"Access-Control-Allow-Origin": "*"},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]


# ─────────────────────────────────────────────────────────────────────────────
# Pydantic models
# ─────────────────────────────────────────────────────────────────────────────

FieldElement = Union[int, str]


class RegisterRequest(BaseModel):
    """snarkjs-style proof plus the file label."""

    model_config = ConfigDict(populate_by_name=True)

    p_a: list[FieldElement] = Field(alias="pA")
    p_b: list[list[FieldElement]] = Field(alias="pB")
    p_c: list[FieldElement] = Field(alias="pC")
    public_signals: list[FieldElement] = Field(alias="publicSignals")
    file_name: str = Field(alias="fileName")


class AdminRequest(BaseModel):
    action: Literal["add_uploader", "remove_uploader", "transfer_ownership", "renounce_ownership"]
    address: Optional[str] = None


class SubmitRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    signed_txns: list[str] = Field(alias="signedTxns")


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _registry() -> RegistryClient:
    try:
        return get_registry()
    except ValueError as e:
        raise HTTPException(status_code=503, detail=f"Registry not configured: {e}")


async def _in_executor(fn, *args):
    """algod calls and the pairing check block; keep them off the event loop."""
    return await asyncio.get_running_loop().run_in_executor(None, functools.partial(fn, *args))


# ─────────────────────────────────────────────────────────────────────────────
# Endpoints
# ─────────────────────────────────────────────────────────────────────────────

@app.get("/")
async def root():
    return {"service": "ProofMark API", "status": "healthy", "version": "1.0.0"}


@app.get("/health")
async def health():
    try:
        app_id = get_app_id()
    except ValueError:
        app_id = None
    return {
        "status": "healthy",
        "app_id": app_id,
        "algod_server": os.getenv("ALGORAND_ALGOD_SERVER", "https://testnet-api.algonode.cloud"),
        "auth_configured": bool(os.getenv("JWT_SECRET_KEY")),
        "verification_key_configured": bool(os.getenv("VERIFICATION_KEY_PATH")),
        "mongodb_configured": get_db() is not None,
        "webhook_configured": bool(os.getenv("AUDIT_WEBHOOK_URL")),
    }


# ── Auth ─────────────────────────────────────────────────────────────────────

@app.post("/api/auth/challenge")
async def challenge(request: ChallengeRequest):
    try:
        text = issue_challenge(request.address)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"address": request.address, "challenge": text}


@app.post("/api/auth/login")
async def login(request: LoginRequest):
    if not os.getenv("JWT_SECRET_KEY"):
        raise HTTPException(status_code=503, detail="Authentication is not configured")
    text = consume_challenge(request.address)
    if text is None:
        raise HTTPException(status_code=401, detail="No pending challenge for this address (or it expired)")
    if not verify_signature(request.address, text, request.signature):
        raise HTTPException(status_code=401, detail="Signature does not match the challenge")
    try:
        token = create_token(request.address)
    except AuthNotConfigured:
        raise HTTPException(status_code=503, detail="Authentication is not configured")
    logger.info(f"Login: {request.address}")
    return {"token": token, "address": request.address}


# ── Files ────────────────────────────────────────────────────────────────────

@app.post("/api/files/prepare")
async def prepare_registration(request: RegisterRequest, caller: str = Depends(get_caller)):
    """
    Build the unsigned register_file call for a proof.

    The caller's wallet signs the returned transactions and submits them to
    /api/transactions. Role, shape, duplicate and (when a verification key is
    configured) proof are checked first.
    """
    registry = _registry()
    prepared = await _in_executor(
        registry.prepare_register,
        caller,
        request.p_a,
        request.p_b,
        request.p_c,
        request.public_signals,
        request.file_name,
    )
    return {"success": True, **prepared}


@app.get("/api/files")
async def list_files():
    digests, records = await _in_executor(_registry().get_all_file_records)
    return {
        "count": len(digests),
        "files": [record_to_dict(d, r) for d, r in zip(digests, records)],
    }


@app.get("/api/files/count")
async def file_count():
    return {"count": await _in_executor(_registry().get_file_count)}


@app.get("/api/files/{digest}")
async def get_file(digest: str):
    key = parse_digest(digest)
    record = await _in_executor(_registry().get_file_record, key)
    return {"found": True, **record_to_dict(key, record)}


# ── Uploaders and ownership ──────────────────────────────────────────────────

@app.get("/api/uploaders")
async def list_uploaders():
    return {"uploaders": await _in_executor(_registry().uploaders)}


@app.get("/api/uploaders/{address}")
async def is_uploader(address: str):
    require_address(address)
    return {"address": address, "is_uploader": await _in_executor(_registry().is_uploader, address)}


@app.get("/api/owner")
async def get_owner():
    return {"owner": await _in_executor(_registry().owner)}


@app.post("/api/admin/prepare")
async def prepare_admin(request: AdminRequest, caller: str = Depends(get_caller)):
    """Build an unsigned owner operation (uploader management, ownership)."""
    prepared = await _in_executor(_registry().prepare_admin, caller, request.action, request.address)
    return {"success": True, **prepared}


# ── Relay ────────────────────────────────────────────────────────────────────

@app.post("/api/transactions")
async def submit_transactions(request: SubmitRequest, caller: str = Depends(get_caller)):
    """Relay a wallet-signed group prepared above and return its decoded events."""
    result = await _in_executor(_registry().relay, caller, request.signed_txns)
    return {"success": True, **result}


if __name__ == "__main__":  # pragma: no cover
    # python -m backend.main  (from projects/)
    import uvicorn

    uvicorn.run(app, host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))
