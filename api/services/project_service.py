from db.models.project import (
    Project,
    TEMPLATES,
    DEPLOYMENT_DRAFT,
    DEPLOYMENT_DEPLOYING,
    DEPLOYMENT_DEPLOYED,
    DEPLOYMENT_FAILED,
    VERIFICATION_PENDING,
    VERIFICATION_SUCCESS,
    VERIFICATION_FAILED,
)
from db.models.job import Job, JOB_KIND_DEPLOY, JOB_KIND_VERIFY
from db.models.user import User, PLAN_FREE, PLAN_STANDARD, PLAN_PREMIUM
from db.repositories.project_repository import ProjectRepository
from db.repositories.job_repository import JobRepository
from api.services.compiler_service import CompilerService, CompiledContract
from api.services.contract_templates import template_source
from api.services.deployment_service import (
    DeploymentService,
    DeploymentConfigError,
    NetworkConfig,
    validate_network_config,
)
from api.services.job_service import JobService
from api.services.verification_service import VerificationService, VerificationError
from typing import Optional
from web3 import Web3
import logging

logger = logging.getLogger(__name__)

# None means unlimited
PLAN_PROJECT_LIMITS = {
    PLAN_FREE: 1,
    PLAN_STANDARD: 10,
    PLAN_PREMIUM: None,
}

# States a new deployment may start from
REDEPLOYABLE_STATUSES = (DEPLOYMENT_DRAFT, DEPLOYMENT_FAILED, DEPLOYMENT_DEPLOYED)

UPDATABLE_FIELDS = ("name", "source_code", "project_metadata", "target_network")

_CLEARED_VERIFICATION = {
    "verification_status": None,
    "verification_guid": None,
    "verification_message": None,
}


class ProjectServiceException(Exception):
    def __init__(self, detail, status_code: int = 400):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code

    def __str__(self):
        return str(self.detail)


class ProjectService:
    def __init__(
        self,
        project_repo: ProjectRepository,
        job_repo: JobRepository,
        compiler: CompilerService,
        deployment_service: DeploymentService,
        verification_service: VerificationService,
        job_service: JobService,
    ):
        self.project_repo = project_repo
        self.job_repo = job_repo
        self.compiler = compiler
        self.deployment_service = deployment_service
        self.verification_service = verification_service
        self.job_service = job_service

    def create_project(
        self, user: User, name: str, template: str, source_code: Optional[str] = None
    ) -> Project:
        if template not in TEMPLATES:
            raise ProjectServiceException(f"Unknown template {template}. Expected one of: {', '.join(TEMPLATES)}")

        limit = PLAN_PROJECT_LIMITS.get(user.plan, PLAN_PROJECT_LIMITS[PLAN_FREE])
        if limit is not None and self.project_repo.count_by_owner(user.wallet_address) >= limit:
            logger.info(f"User {user.id} hit the {user.plan} plan project limit ({limit})")
            raise ProjectServiceException(
                f"{user.plan.capitalize()} plan limit of {limit} project(s) reached. "
                "Upgrade your plan to create more projects.",
                status_code=403,
            )

        project = self.project_repo.create(
            Project(
                name=name,
                template=template,
                owner=user.wallet_address,
                source_code=source_code or template_source(template),
                project_metadata={},
                deployment_status=DEPLOYMENT_DRAFT,
            )
        )
        logger.info(f"Created project {project.id} ({template}) for {user.wallet_address}")
        return project

    def list_projects(self, owner: str) -> list[Project]:
        return self.project_repo.list_by_owner(owner)

    def get_project(self, project_id: int, owner: str) -> Project:
        project = self.project_repo.get_by_id(project_id, owner=owner)
        if not project:
            raise ProjectServiceException("Project not found", status_code=404)
        return project

    def update_project(self, project_id: int, owner: str, updates: dict) -> Project:
        project = self.get_project(project_id, owner)
        unknown = set(updates) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ProjectServiceException(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        if "source_code" in updates and project.deployment_status == DEPLOYMENT_DEPLOYING:
            raise ProjectServiceException("Cannot change source code while a deployment is in progress", status_code=409)
        if not updates:
            return project
        return self.project_repo.update_fields(project, updates)

    def delete_project(self, project_id: int, owner: str) -> None:
        project = self.get_project(project_id, owner)
        if project.deployment_status == DEPLOYMENT_DEPLOYING:
            raise ProjectServiceException("Cannot delete a project while it is deploying", status_code=409)
        self.job_repo.delete_by_project(project.id)
        self.project_repo.delete(project)
        logger.info(f"Deleted project {project_id}")

    def compile_project(self, project_id: int, owner: str, contract_name: Optional[str] = None) -> CompiledContract:
        project = self.get_project(project_id, owner)
        return self.compiler.compile(project.source_code, contract_name=contract_name)

    def request_deploy(
        self,
        project_id: int,
        owner: str,
        network_config: dict,
        contract_name: Optional[str] = None,
    ) -> tuple[Project, Job]:
        """
        Move the project to deploying and queue the deployment job.

        The status change is conditional on the project's current status and
        version, so two concurrent requests cannot both start a deployment.
        """
        project = self.get_project(project_id, owner)

        try:
            self.deployment_service.server_signing_context()
        except DeploymentConfigError as e:
            logger.error(f"Deploy request for project {project_id} rejected: {e}")
            raise ProjectServiceException(
                "Server-side deployment is not configured (DEPLOYER_PRIVATE_KEY is missing)",
                status_code=503,
            )

        network = NetworkConfig.from_dict(network_config or {})
        try:
            validate_network_config(network)
        except ValueError as e:
            raise ProjectServiceException(str(e))

        if project.deployment_status == DEPLOYMENT_DEPLOYING:
            raise ProjectServiceException("Deployment already in progress", status_code=409)

        moved = self.project_repo.transition(
            project.id,
            REDEPLOYABLE_STATUSES,
            DEPLOYMENT_DEPLOYING,
            expected_version=project.version,
            deployment_error=None,
            **_CLEARED_VERIFICATION,
        )
        if not moved:
            raise ProjectServiceException("Deployment already in progress", status_code=409)
        project = self.project_repo.refresh(project)
        logger.info(f"Project {project.id} is deploying to {network.name} (chain {network.chain_id})")

        job = self.job_service.enqueue(
            JOB_KIND_DEPLOY,
            project.id,
            project.owner,
            {"networkConfig": network.to_dict(), "contractName": contract_name},
        )
        return self.project_repo.refresh(project), job

    def record_deployment(
        self,
        project_id: int,
        owner: str,
        address: str,
        tx_hash: str,
        network: dict,
        contract_name: Optional[str] = None,
        abi: Optional[list] = None,
        compiler_version: Optional[str] = None,
    ) -> Project:
        """Persist a deployment the user signed and broadcast from their own wallet."""
        project = self.get_project(project_id, owner)
        if not address or not Web3.is_address(address):
            raise ProjectServiceException("Invalid contract address")
        if not tx_hash:
            raise ProjectServiceException("txHash is required")

        network_config = NetworkConfig.from_dict(network or {})
        try:
            validate_network_config(network_config, require_rpc=False)
        except ValueError as e:
            raise ProjectServiceException(str(e))

        moved = self.project_repo.transition(
            project.id,
            REDEPLOYABLE_STATUSES,
            DEPLOYMENT_DEPLOYED,
            expected_version=project.version,
            deployed_address=address,
            deployed_network=network_config.to_dict(include_rpc=False),
            deploy_tx_hash=tx_hash,
            contract_name=contract_name or project.contract_name,
            abi=abi if abi is not None else project.abi,
            compiler_version=compiler_version,
            deployment_error=None,
            **_CLEARED_VERIFICATION,
        )
        if not moved:
            raise ProjectServiceException("Deployment already in progress", status_code=409)
        logger.info(f"Recorded client-signed deployment of project {project.id} at {address}")
        return self.project_repo.refresh(project)

    def request_verification(
        self,
        project_id: int,
        owner: str,
        license_type: Optional[int] = None,
        constructor_args: Optional[str] = None,
    ) -> tuple[Project, Job]:
        project = self.get_project(project_id, owner)
        if project.deployment_status != DEPLOYMENT_DEPLOYED or not project.deployed_address:
            raise ProjectServiceException("Project must be deployed before verification")

        chain_id = (project.deployed_network or {}).get("chainId")
        if not chain_id or not self.verification_service.is_supported_chain(chain_id):
            raise ProjectServiceException("BaseScan verification is only supported on Base networks")
        if not self.verification_service.api_key_for(chain_id):
            raise ProjectServiceException(f"No BaseScan API key configured for chain {chain_id}")
        if project.verification_status == VERIFICATION_PENDING:
            raise ProjectServiceException("Verification already in progress", status_code=409)
        if not project.contract_name:
            raise ProjectServiceException("Project has no contract name recorded; redeploy or record it first")

        compiler_version = project.compiler_version or self.compiler.ensure_compiler()
        try:
            submission = self.verification_service.submit_verification(
                project.deployed_address,
                chain_id,
                project.contract_name,
                project.source_code,
                compiler_version,
                constructor_args=constructor_args or "",
                license_type=license_type,
                optimization_runs=self.compiler.optimizer_runs,
            )
        except VerificationError as e:
            logger.error(f"Verification submission for project {project.id} failed: {e}")
            raise ProjectServiceException(str(e), status_code=502)

        moved = self.project_repo.transition_verification(
            project.id,
            [None, VERIFICATION_SUCCESS, VERIFICATION_FAILED],
            VERIFICATION_PENDING,
            verification_guid=submission.guid,
            verification_message=None,
        )
        if not moved:
            raise ProjectServiceException("Verification already in progress", status_code=409)
        project = self.project_repo.refresh(project)
        logger.info(f"Project {project.id} verification submitted, guid {submission.guid}")

        job = self.job_service.enqueue(
            JOB_KIND_VERIFY,
            project.id,
            project.owner,
            {"chainId": int(chain_id), "guid": submission.guid, "endpoint": submission.endpoint},
        )
        return self.project_repo.refresh(project), job
