from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from api.dependencies import get_compiler_service, get_current_user
from api.models import CompileRequest, CompileResponse
from api.services.compiler_service import CompilerService, CompilationError
from db.models.user import User
import logging

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)
logger = logging.getLogger(__name__)


@router.post("/compile", response_model=CompileResponse)
@limiter.limit("30/minute")  # solc runs are CPU heavy
def compile_source(
    request: Request,
    body: CompileRequest,
    current_user: User = Depends(get_current_user),
    compiler: CompilerService = Depends(get_compiler_service),
):
    if not body.source_code or not body.source_code.strip():
        raise HTTPException(status_code=400, detail="sourceCode is required")

    try:
        compiled = compiler.compile(body.source_code, contract_name=body.contract_name)
    except CompilationError as e:
        logger.info(f"Compilation failed for user {current_user.id}: {len(e.errors)} error(s)")
        failed = CompileResponse(success=False, errors=e.errors or [{"message": str(e)}], warnings=e.warnings)
        return JSONResponse(status_code=400, content=failed.model_dump(by_alias=True, exclude_none=True))

    return CompileResponse(success=True, **compiled.to_dict())
