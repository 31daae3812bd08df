from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from api.dependencies import get_project_service, get_job_service, get_current_user
from api.models import (
    CompileResponse,
    DeployRequest,
    DeployResponse,
    JobResponse,
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
    RecordDeploymentRequest,
    VerifyRequest,
    VerifyResponse,
)
from api.services.compiler_service import CompilationError
from api.services.job_service import JobService, JobServiceException
from api.services.project_service import ProjectService, ProjectServiceException
from db.models.user import User

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)


@router.get("/projects", response_model=list[ProjectResponse])
def list_projects(
    current_user: User = Depends(get_current_user),
    project_service: ProjectService = Depends(get_project_service),
):
    return project_service.list_projects(current_user.wallet_address)


@router.post("/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def create_project(
    project: ProjectCreate,
    current_user: User = Depends(get_current_user),
    project_service: ProjectService = Depends(get_project_service),
):
    try:
        return project_service.create_project(
            current_user, project.name, project.template, project.source_code
        )
    except ProjectServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/projects/{project_id}", response_model=ProjectResponse)
def get_project(
    project_id: int,
    current_user: User = Depends(get_current_user),
    project_service: ProjectService = Depends(get_project_service),
):
    try:
        return project_service.get_project(project_id, current_user.wallet_address)
    except ProjectServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.patch("/projects/{project_id}", response_model=ProjectResponse)
def update_project(
    project_id: int,
    project: ProjectUpdate,
    current_user: User = Depends(get_current_user),
    project_service: ProjectService = Depends(get_project_service),
):
    updates = project.model_dump(exclude_unset=True)
    if "metadata" in updates:
        updates["project_metadata"] = updates.pop("metadata")
    if updates.get("target_network") is not None:
        updates["target_network"] = project.target_network.model_dump(by_alias=True, exclude_none=True)
    try:
        return project_service.update_project(project_id, current_user.wallet_address, updates)
    except ProjectServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.delete("/projects/{project_id}")
def delete_project(
    project_id: int,
    current_user: User = Depends(get_current_user),
    project_service: ProjectService = Depends(get_project_service),
):
    try:
        project_service.delete_project(project_id, current_user.wallet_address)
    except ProjectServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"message": "Project deleted successfully"}


@router.get("/projects/{project_id}/compile", response_model=CompileResponse)
def compile_project(
    project_id: int,
    contract_name: str | None = Query(default=None, alias="contractName"),
    current_user: User = Depends(get_current_user),
    project_service: ProjectService = Depends(get_project_service),
):
    """Compile the stored source so the client can sign the deployment itself."""
    try:
        compiled = project_service.compile_project(
            project_id, current_user.wallet_address, contract_name=contract_name
        )
    except ProjectServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except CompilationError as e:
        failed = CompileResponse(success=False, errors=e.errors or [{"message": str(e)}], warnings=e.warnings)
        return JSONResponse(status_code=400, content=failed.model_dump(by_alias=True, exclude_none=True))
    return CompileResponse(success=True, **compiled.to_dict())


@router.post("/projects/{project_id}/deploy", response_model=DeployResponse)
@limiter.limit("20/minute")
def deploy_project(
    request: Request,
    project_id: int,
    body: DeployRequest,
    current_user: User = Depends(get_current_user),
    project_service: ProjectService = Depends(get_project_service),
):
    try:
        project, job = project_service.request_deploy(
            project_id,
            current_user.wallet_address,
            body.network_config.model_dump(by_alias=True),
            contract_name=body.contract_name,
        )
    except ProjectServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return DeployResponse(
        message="Deployment started",
        project=ProjectResponse.model_validate(project),
        job_id=job.id,
    )


@router.post("/projects/{project_id}/record-deployment", response_model=ProjectResponse)
def record_deployment(
    project_id: int,
    body: RecordDeploymentRequest,
    current_user: User = Depends(get_current_user),
    project_service: ProjectService = Depends(get_project_service),
):
    try:
        return project_service.record_deployment(
            project_id,
            current_user.wallet_address,
            body.address,
            body.tx_hash,
            body.network.model_dump(by_alias=True),
            contract_name=body.contract_name,
            abi=body.abi,
            compiler_version=body.compiler_version,
        )
    except ProjectServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/projects/{project_id}/verify", response_model=VerifyResponse)
def verify_project(
    project_id: int,
    body: VerifyRequest | None = None,
    current_user: User = Depends(get_current_user),
    project_service: ProjectService = Depends(get_project_service),
):
    body = body or VerifyRequest()
    try:
        _, job = project_service.request_verification(
            project_id,
            current_user.wallet_address,
            license_type=body.license_type,
            constructor_args=body.constructor_args,
        )
    except ProjectServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return VerifyResponse(
        message="Verification submitted",
        guid=job.payload["guid"],
        job_id=job.id,
    )


@router.get("/projects/{project_id}/jobs", response_model=list[JobResponse])
def list_project_jobs(
    project_id: int,
    current_user: User = Depends(get_current_user),
    job_service: JobService = Depends(get_job_service),
):
    try:
        return job_service.list_jobs(project_id, current_user.wallet_address)
    except JobServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
