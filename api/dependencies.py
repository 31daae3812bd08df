# api/dependencies.py
from fastapi import Depends, Request, HTTPException, status
from db.engine import SessionLocal
from sqlalchemy.orm import Session
from db.repositories.job_repository import JobRepository
from db.repositories.project_repository import ProjectRepository
from db.repositories.settings_repository import SettingsRepository
from db.repositories.subscription_repository import SubscriptionRepository
from db.repositories.user_repository import UserRepository
from api.services.compiler_service import CompilerService, DEFAULT_SOLC_VERSION, DEFAULT_OPTIMIZER_RUNS
from api.services.deployment_service import DeploymentService
from api.services.import_resolver import (
    ImportResolver,
    DEFAULT_OPENZEPPELIN_VERSION,
    DEFAULT_CHAINLINK_VERSION,
)
from api.services.job_service import JobRunner, JobService
from api.services.payment_service import PaymentVerifier
from api.services.project_service import ProjectService
from api.services.subscription_service import SubscriptionService
from api.services.user_service import PrivyTokenVerifier, UserService, UserServiceException
from api.services.verification_service import VerificationService


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def build_compiler_service(settings_repo: SettingsRepository) -> CompilerService:
    root = settings_repo.get_setting("CONTRACTS_ROOT")
    openzeppelin_version = settings_repo.get_setting("OPENZEPPELIN_VERSION", DEFAULT_OPENZEPPELIN_VERSION)
    chainlink_version = settings_repo.get_setting("CHAINLINK_VERSION", DEFAULT_CHAINLINK_VERSION)
    return CompilerService(
        solc_version=settings_repo.get_setting("SOLC_VERSION", DEFAULT_SOLC_VERSION),
        optimizer_runs=int(settings_repo.get_setting("SOLC_OPTIMIZER_RUNS", str(DEFAULT_OPTIMIZER_RUNS))),
        resolver_factory=lambda cache: ImportResolver(
            root=root,
            cache=cache,
            openzeppelin_version=openzeppelin_version,
            chainlink_version=chainlink_version,
        ),
    )


def build_job_service(db: Session, runner: JobRunner | None = None) -> JobService:
    settings_repo = SettingsRepository(db)
    compiler = build_compiler_service(settings_repo)
    return JobService(
        JobRepository(db),
        ProjectRepository(db),
        deployment_service=DeploymentService(compiler, settings_repo),
        verification_service=VerificationService(settings_repo),
        runner=runner,
    )


def get_job_runner(request: Request) -> JobRunner:
    runner = getattr(request.app.state, "job_runner", None)
    if runner is None:
        runner = JobRunner(SessionLocal, build_job_service)
        request.app.state.job_runner = runner
    return runner


def get_compiler_service(db: Session = Depends(get_db)):
    return build_compiler_service(SettingsRepository(db))


def get_job_service(
    db: Session = Depends(get_db),
    runner: JobRunner = Depends(get_job_runner),
):
    return build_job_service(db, runner)


def get_project_service(
    db: Session = Depends(get_db),
    job_service: JobService = Depends(get_job_service),
):
    settings_repo = SettingsRepository(db)
    compiler = build_compiler_service(settings_repo)
    return ProjectService(
        ProjectRepository(db),
        JobRepository(db),
        compiler,
        DeploymentService(compiler, settings_repo),
        VerificationService(settings_repo),
        job_service,
    )


def get_subscription_service(db: Session = Depends(get_db)):
    return SubscriptionService(
        SubscriptionRepository(db),
        UserRepository(db),
        PaymentVerifier(SettingsRepository(db)),
    )


def get_user_service(db: Session = Depends(get_db)):
    user_repo = UserRepository(db)
    return UserService(user_repo, PrivyTokenVerifier(SettingsRepository(db)))


async def get_current_user(
    request: Request,
    user_service: UserService = Depends(get_user_service),
):
    try:
        user = await user_service.get_current_user_from_request(request)
        return user
    except UserServiceException as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
