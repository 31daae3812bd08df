from db.models.job import (
    Job,
    JOB_KIND_DEPLOY,
    JOB_KIND_VERIFY,
    JOB_QUEUED,
    JOB_RUNNING,
    JOB_SUCCEEDED,
    JOB_FAILED,
)
from db.models.project import (
    DEPLOYMENT_DEPLOYING,
    DEPLOYMENT_DEPLOYED,
    DEPLOYMENT_FAILED,
    VERIFICATION_PENDING,
    VERIFICATION_SUCCESS,
    VERIFICATION_FAILED,
)
from db.repositories.job_repository import JobRepository
from db.repositories.project_repository import ProjectRepository
from api.services.deployment_service import (
    DeploymentService,
    DeploymentConfigError,
    NetworkConfig,
)
from api.services.verification_service import VerificationService, VerificationError
from api.services.polling import SUCCESS
from datetime import datetime
from typing import Callable, Optional
from sqlalchemy.orm import Session
import logging

logger = logging.getLogger(__name__)


class JobServiceException(Exception):
    def __init__(self, detail, status_code: int = 400):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code

    def __str__(self):
        return str(self.detail)


def _verify_guid(job: Job) -> str:
    # Jobs without a guid must never match a project
    return (job.payload or {}).get("guid") or ""


class JobRunner:
    """
    Hands queued jobs to the scheduler as one-shot tasks.

    Each task opens its own session through session_factory, since the
    request that queued the job has already returned. Without a running
    scheduler the job executes inline.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        service_factory: Callable[[Session], "JobService"],
        scheduler=None,
    ):
        self.session_factory = session_factory
        self.service_factory = service_factory
        self.scheduler = scheduler

    def submit(self, job_id: int) -> None:
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.add_job(
                self.run,
                "date",
                args=[job_id],
                misfire_grace_time=None,
            )
            logger.info(f"Scheduled job {job_id}")
        else:
            self.run(job_id)

    def run(self, job_id: int) -> None:
        db = self.session_factory()
        try:
            self.service_factory(db).execute(job_id)
        except Exception:
            logger.exception(f"Job {job_id} crashed outside its handler")
        finally:
            db.close()


class JobService:
    def __init__(
        self,
        job_repo: JobRepository,
        project_repo: ProjectRepository,
        deployment_service: Optional[DeploymentService] = None,
        verification_service: Optional[VerificationService] = None,
        runner: Optional[JobRunner] = None,
    ):
        self.job_repo = job_repo
        self.project_repo = project_repo
        self.deployment_service = deployment_service
        self.verification_service = verification_service
        self.runner = runner

    def enqueue(self, kind: str, project_id: int, owner: str, payload: dict) -> Job:
        job = self.job_repo.create(
            Job(kind=kind, project_id=project_id, owner=owner, status=JOB_QUEUED, payload=payload)
        )
        logger.info(f"Queued {kind} job {job.id} for project {project_id}")
        if self.runner is not None:
            self.runner.submit(job.id)
        return job

    def get_job(self, job_id: int, owner: str) -> Job:
        job = self.job_repo.get_by_id(job_id, owner=owner)
        if not job:
            raise JobServiceException("Job not found", status_code=404)
        return job

    def list_jobs(self, project_id: int, owner: str) -> list[Job]:
        if not self.project_repo.get_by_id(project_id, owner=owner):
            raise JobServiceException("Project not found", status_code=404)
        return self.job_repo.list_by_project(project_id)

    def retry(self, job_id: int, owner: str) -> Job:
        """Re-run a failed job with its original payload."""
        job = self.get_job(job_id, owner)
        if job.status != JOB_FAILED:
            raise JobServiceException(f"Only failed jobs can be retried (job is {job.status})", status_code=409)

        if job.kind == JOB_KIND_DEPLOY:
            try:
                self.deployment_service.server_signing_context()
            except DeploymentConfigError as e:
                raise JobServiceException(str(e), status_code=503)
            moved = self.project_repo.transition(
                job.project_id,
                [DEPLOYMENT_FAILED],
                DEPLOYMENT_DEPLOYING,
                deployment_error=None,
                verification_status=None,
                verification_guid=None,
                verification_message=None,
            )
        else:
            moved = self.project_repo.transition_verification(
                job.project_id,
                [VERIFICATION_FAILED],
                VERIFICATION_PENDING,
                expected_guid=_verify_guid(job),
                verification_message=None,
            )
        if not moved:
            raise JobServiceException("Project is not in a state that allows this retry", status_code=409)

        job = self.job_repo.update(
            job,
            {"status": JOB_QUEUED, "error": None, "result": None, "started_at": None, "finished_at": None},
        )
        logger.info(f"Retrying {job.kind} job {job.id} (previous attempts: {job.attempts})")
        if self.runner is not None:
            self.runner.submit(job.id)
        return self.job_repo.refresh(job)

    def execute(self, job_id: int) -> Optional[Job]:
        job = self.job_repo.get_by_id(job_id)
        if not job:
            logger.error(f"Job {job_id} not found")
            return None
        if job.status != JOB_QUEUED:
            logger.warning(f"Job {job_id} is {job.status}, not queued; skipping")
            return job

        job = self.job_repo.update(
            job,
            {"status": JOB_RUNNING, "attempts": (job.attempts or 0) + 1, "started_at": datetime.utcnow()},
        )
        handlers = {
            JOB_KIND_DEPLOY: (self._run_deploy, self._fail_deploy),
            JOB_KIND_VERIFY: (self._run_verify, self._fail_verify),
        }
        if job.kind not in handlers:
            return self.job_repo.update(
                job,
                {"status": JOB_FAILED, "error": f"Unknown job kind {job.kind}", "finished_at": datetime.utcnow()},
            )
        run, fail = handlers[job.kind]

        try:
            result = run(job)
        except Exception as e:
            logger.exception(f"{job.kind} job {job.id} for project {job.project_id} failed: {e}")
            fail(job, str(e))
            return self.job_repo.update(
                job, {"status": JOB_FAILED, "error": str(e), "finished_at": datetime.utcnow()}
            )

        logger.info(f"{job.kind} job {job.id} for project {job.project_id} succeeded")
        return self.job_repo.update(
            job, {"status": JOB_SUCCEEDED, "result": result, "finished_at": datetime.utcnow()}
        )

    def _run_deploy(self, job: Job) -> dict:
        project = self.project_repo.get_by_id(job.project_id)
        if not project:
            raise JobServiceException("Project no longer exists", status_code=404)

        payload = job.payload or {}
        network = NetworkConfig.from_dict(payload.get("networkConfig") or {})
        signing = self.deployment_service.server_signing_context()
        deployed = self.deployment_service.deploy(
            network,
            project.source_code,
            project.owner,
            signing,
            contract_name=payload.get("contractName"),
        )

        moved = self.project_repo.transition(
            project.id,
            [DEPLOYMENT_DEPLOYING],
            DEPLOYMENT_DEPLOYED,
            deployed_address=deployed["address"],
            deployed_network=network.to_dict(include_rpc=False),
            deploy_tx_hash=deployed["txHash"],
            contract_name=deployed["contractName"],
            compiler_version=deployed["compilerVersion"],
            abi=deployed["abi"],
            deployment_error=None,
        )
        if not moved:
            raise JobServiceException(
                f"Contract deployed at {deployed['address']} but project {project.id} left the deploying state",
                status_code=409,
            )
        logger.info(f"Project {project.id} deployed at {deployed['address']} on {network.name}")
        return {key: value for key, value in deployed.items() if key != "abi"}

    def _fail_deploy(self, job: Job, error: str) -> None:
        if self.project_repo.transition(
            job.project_id, [DEPLOYMENT_DEPLOYING], DEPLOYMENT_FAILED, deployment_error=error
        ):
            logger.info(f"Project {job.project_id} marked failed")

    def _run_verify(self, job: Job) -> dict:
        payload = job.payload or {}
        outcome = self.verification_service.await_result(int(payload["chainId"]), payload["guid"])
        status = outcome.value
        if outcome.status != SUCCESS:
            raise VerificationError(status.message if status else "Verification failed")

        moved = self.project_repo.transition_verification(
            job.project_id,
            [VERIFICATION_PENDING],
            VERIFICATION_SUCCESS,
            expected_guid=_verify_guid(job),
            verification_message=status.message,
        )
        if not moved:
            logger.warning(
                f"Verification {payload['guid']} succeeded but project {job.project_id} "
                "no longer tracks it; project left unchanged"
            )
        else:
            logger.info(f"Project {job.project_id} verified: {status.message}")
        return {"status": VERIFICATION_SUCCESS, "message": status.message, "attempts": outcome.attempts}

    def _fail_verify(self, job: Job, error: str) -> None:
        if self.project_repo.transition_verification(
            job.project_id,
            [VERIFICATION_PENDING],
            VERIFICATION_FAILED,
            expected_guid=_verify_guid(job),
            verification_message=error,
        ):
            logger.info(f"Project {job.project_id} verification failed: {error}")
