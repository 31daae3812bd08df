"""
Tests for detached deploy / verify jobs
"""
import pytest
from unittest.mock import Mock
from api.services.deployment_service import DeploymentError, DeploymentConfigError
from api.services.job_service import JobRunner, JobService, JobServiceException
from api.services.polling import PollOutcome, SUCCESS, FAILED
from api.services.verification_service import VerificationStatus
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
    Project,
    DEPLOYMENT_DEPLOYING,
    DEPLOYMENT_DEPLOYED,
    DEPLOYMENT_FAILED,
    VERIFICATION_PENDING,
    VERIFICATION_SUCCESS,
    VERIFICATION_FAILED,
)
from db.repositories.job_repository import JobRepository
from db.repositories.project_repository import ProjectRepository

OWNER = "0x1111111111111111111111111111111111111111"
CONTRACT_ADDRESS = "0x" + "c" * 40
NETWORK = {"name": "base-sepolia", "rpcUrl": "https://sepolia.base.org", "chainId": 84532}

DEPLOY_RESULT = {
    "address": CONTRACT_ADDRESS,
    "abi": [{"type": "constructor", "inputs": []}],
    "network": "base-sepolia",
    "chainId": 84532,
    "txHash": "0x" + "01" * 32,
    "contractName": "MyToken",
    "compilerVersion": "v0.8.24+commit.e11b9ed9",
    "blockNumber": 12,
    "gasUsed": 500000,
    "ownershipTransferred": False,
    "ownershipError": "transferOwnership transaction 0x02 reverted",
}


@pytest.fixture
def deployment_service():
    service = Mock()
    service.deploy.return_value = dict(DEPLOY_RESULT)
    return service


@pytest.fixture
def verification_service():
    return Mock()


@pytest.fixture
def job_service(db_session, deployment_service, verification_service):
    return JobService(
        JobRepository(db_session),
        ProjectRepository(db_session),
        deployment_service=deployment_service,
        verification_service=verification_service,
    )


def add_project(db_session, **fields):
    values = {"name": "Token", "template": "ERC20", "owner": OWNER, "source_code": "contract MyToken {}"}
    values.update(fields)
    project = Project(**values)
    db_session.add(project)
    db_session.commit()
    return project


def add_job(db_session, project, kind, payload, status=JOB_QUEUED):
    job = Job(kind=kind, project_id=project.id, owner=OWNER, status=status, payload=payload)
    db_session.add(job)
    db_session.commit()
    return job


class TestDeployJob:
    """Deployment jobs persist their terminal state on both job and project"""

    def test_success_marks_project_deployed(self, db_session, job_service, deployment_service):
        project = add_project(db_session, deployment_status=DEPLOYMENT_DEPLOYING)
        job = add_job(db_session, project, JOB_KIND_DEPLOY, {"networkConfig": NETWORK, "contractName": None})

        job_service.execute(job.id)

        db_session.refresh(project)
        db_session.refresh(job)
        assert project.deployment_status == DEPLOYMENT_DEPLOYED
        assert project.deployed_address == CONTRACT_ADDRESS
        assert project.deployed_network == {"name": "base-sepolia", "chainId": 84532}
        assert project.contract_name == "MyToken"
        assert project.compiler_version == "v0.8.24+commit.e11b9ed9"
        assert project.abi == DEPLOY_RESULT["abi"]
        assert job.status == JOB_SUCCEEDED
        assert job.attempts == 1
        assert "abi" not in job.result
        assert job.result["ownershipTransferred"] is False
        assert job.result["ownershipError"]
        network_arg = deployment_service.deploy.call_args[0][0]
        assert network_arg.rpc_url == "https://sepolia.base.org"

    def test_failure_marks_project_failed_with_error(self, db_session, job_service, deployment_service):
        deployment_service.deploy.side_effect = DeploymentError("insufficient funds for gas")
        project = add_project(db_session, deployment_status=DEPLOYMENT_DEPLOYING)
        job = add_job(db_session, project, JOB_KIND_DEPLOY, {"networkConfig": NETWORK})

        job_service.execute(job.id)

        db_session.refresh(project)
        db_session.refresh(job)
        assert project.deployment_status == DEPLOYMENT_FAILED
        assert project.deployment_error == "insufficient funds for gas"
        assert job.status == JOB_FAILED
        assert job.error == "insufficient funds for gas"
        assert job.finished_at is not None

    def test_missing_key_at_run_time_fails_job(self, db_session, job_service, deployment_service):
        deployment_service.server_signing_context.side_effect = DeploymentConfigError("DEPLOYER_PRIVATE_KEY is not configured")
        project = add_project(db_session, deployment_status=DEPLOYMENT_DEPLOYING)
        job = add_job(db_session, project, JOB_KIND_DEPLOY, {"networkConfig": NETWORK})

        job_service.execute(job.id)

        db_session.refresh(project)
        assert project.deployment_status == DEPLOYMENT_FAILED
        deployment_service.deploy.assert_not_called()

    def test_non_queued_job_is_skipped(self, db_session, job_service, deployment_service):
        project = add_project(db_session, deployment_status=DEPLOYMENT_DEPLOYING)
        job = add_job(db_session, project, JOB_KIND_DEPLOY, {"networkConfig": NETWORK}, status=JOB_RUNNING)

        job_service.execute(job.id)

        deployment_service.deploy.assert_not_called()


class TestVerifyJob:
    """Verification polling jobs"""

    def test_verified(self, db_session, job_service, verification_service):
        verification_service.await_result.return_value = PollOutcome(
            status=SUCCESS, value=VerificationStatus(SUCCESS, "Pass - Verified"), attempts=2
        )
        project = add_project(
            db_session,
            deployment_status=DEPLOYMENT_DEPLOYED,
            deployed_address=CONTRACT_ADDRESS,
            verification_status=VERIFICATION_PENDING,
            verification_guid="guid-1",
        )
        job = add_job(db_session, project, JOB_KIND_VERIFY, {"chainId": 84532, "guid": "guid-1"})

        job_service.execute(job.id)

        db_session.refresh(project)
        db_session.refresh(job)
        verification_service.await_result.assert_called_once_with(84532, "guid-1")
        assert project.verification_status == VERIFICATION_SUCCESS
        assert project.verification_message == "Pass - Verified"
        assert job.status == JOB_SUCCEEDED

    def test_timeout_persists_failed(self, db_session, job_service, verification_service):
        verification_service.await_result.return_value = PollOutcome(
            status=FAILED,
            value=VerificationStatus(FAILED, "Verification timed out after 20 status checks"),
            attempts=20,
            timed_out=True,
        )
        project = add_project(
            db_session,
            deployment_status=DEPLOYMENT_DEPLOYED,
            deployed_address=CONTRACT_ADDRESS,
            verification_status=VERIFICATION_PENDING,
            verification_guid="guid-1",
        )
        job = add_job(db_session, project, JOB_KIND_VERIFY, {"chainId": 84532, "guid": "guid-1"})

        job_service.execute(job.id)

        db_session.refresh(project)
        db_session.refresh(job)
        assert project.verification_status == VERIFICATION_FAILED
        assert "timed out" in project.verification_message
        assert job.status == JOB_FAILED

    def test_stale_job_does_not_touch_newer_verification(self, db_session, job_service, verification_service):
        """A job for an earlier deployment's guid leaves the current verification alone"""
        verification_service.await_result.return_value = PollOutcome(
            status=FAILED, value=VerificationStatus(FAILED, "Fail - Unable to verify"), attempts=3
        )
        project = add_project(
            db_session,
            deployment_status=DEPLOYMENT_DEPLOYED,
            deployed_address=CONTRACT_ADDRESS,
            verification_status=VERIFICATION_PENDING,
            verification_guid="guid-new",
        )
        old_job = add_job(db_session, project, JOB_KIND_VERIFY, {"chainId": 84532, "guid": "guid-old"})

        job_service.execute(old_job.id)

        db_session.refresh(project)
        db_session.refresh(old_job)
        assert project.verification_status == VERIFICATION_PENDING
        assert project.verification_guid == "guid-new"
        assert project.verification_message is None
        assert old_job.status == JOB_FAILED

    def test_stale_success_does_not_mark_project_verified(self, db_session, job_service, verification_service):
        verification_service.await_result.return_value = PollOutcome(
            status=SUCCESS, value=VerificationStatus(SUCCESS, "Pass - Verified"), attempts=1
        )
        project = add_project(
            db_session,
            deployment_status=DEPLOYMENT_DEPLOYED,
            deployed_address=CONTRACT_ADDRESS,
            verification_status=VERIFICATION_PENDING,
            verification_guid="guid-new",
        )
        old_job = add_job(db_session, project, JOB_KIND_VERIFY, {"chainId": 84532, "guid": "guid-old"})

        job_service.execute(old_job.id)

        db_session.refresh(project)
        assert project.verification_status == VERIFICATION_PENDING


class TestRetry:
    """Only failed jobs are retried, after the project is moved back"""

    def test_retry_failed_deploy(self, db_session, deployment_service, verification_service):
        runner = Mock()
        service = JobService(
            JobRepository(db_session),
            ProjectRepository(db_session),
            deployment_service=deployment_service,
            verification_service=verification_service,
            runner=runner,
        )
        project = add_project(db_session, deployment_status=DEPLOYMENT_FAILED, deployment_error="boom")
        job = add_job(db_session, project, JOB_KIND_DEPLOY, {"networkConfig": NETWORK}, status=JOB_FAILED)

        retried = service.retry(job.id, OWNER)

        db_session.refresh(project)
        assert retried.status == JOB_QUEUED
        assert project.deployment_status == DEPLOYMENT_DEPLOYING
        assert project.deployment_error is None
        runner.submit.assert_called_once_with(job.id)

    def test_retry_failed_verify(self, db_session, job_service):
        project = add_project(
            db_session,
            deployment_status=DEPLOYMENT_DEPLOYED,
            verification_status=VERIFICATION_FAILED,
            verification_guid="guid-1",
            verification_message="Fail - Unable to verify",
        )
        job = add_job(db_session, project, JOB_KIND_VERIFY, {"chainId": 84532, "guid": "guid-1"}, status=JOB_FAILED)

        retried = job_service.retry(job.id, OWNER)

        db_session.refresh(project)
        assert retried.status == JOB_QUEUED
        assert project.verification_status == VERIFICATION_PENDING
        assert project.verification_message is None

    def test_retry_old_verify_job_after_new_submission(self, db_session, job_service):
        """An old verify job cannot take over a later submission's failed state"""
        project = add_project(
            db_session,
            deployment_status=DEPLOYMENT_DEPLOYED,
            verification_status=VERIFICATION_FAILED,
            verification_guid="guid-new",
        )
        old_job = add_job(
            db_session, project, JOB_KIND_VERIFY, {"chainId": 84532, "guid": "guid-old"}, status=JOB_FAILED
        )

        with pytest.raises(JobServiceException) as exc:
            job_service.retry(old_job.id, OWNER)

        db_session.refresh(project)
        assert exc.value.status_code == 409
        assert project.verification_status == VERIFICATION_FAILED

    def test_retry_rejects_non_failed_job(self, db_session, job_service):
        project = add_project(db_session, deployment_status=DEPLOYMENT_DEPLOYED)
        job = add_job(db_session, project, JOB_KIND_DEPLOY, {"networkConfig": NETWORK}, status=JOB_SUCCEEDED)

        with pytest.raises(JobServiceException) as exc:
            job_service.retry(job.id, OWNER)
        assert exc.value.status_code == 409

    def test_retry_deploy_requires_signing_key(self, db_session, job_service, deployment_service):
        deployment_service.server_signing_context.side_effect = DeploymentConfigError("missing")
        project = add_project(db_session, deployment_status=DEPLOYMENT_FAILED)
        job = add_job(db_session, project, JOB_KIND_DEPLOY, {"networkConfig": NETWORK}, status=JOB_FAILED)

        with pytest.raises(JobServiceException) as exc:
            job_service.retry(job.id, OWNER)
        assert exc.value.status_code == 503

    def test_retry_other_owner_not_found(self, db_session, job_service):
        project = add_project(db_session, deployment_status=DEPLOYMENT_FAILED)
        job = add_job(db_session, project, JOB_KIND_DEPLOY, {"networkConfig": NETWORK}, status=JOB_FAILED)

        with pytest.raises(JobServiceException) as exc:
            job_service.retry(job.id, "0x" + "2" * 40)
        assert exc.value.status_code == 404


class TestJobRunner:
    """Scheduling versus inline execution"""

    def test_runs_inline_without_scheduler(self):
        session = Mock()
        service = Mock()
        runner = JobRunner(lambda: session, lambda db: service)

        runner.submit(5)

        service.execute.assert_called_once_with(5)
        session.close.assert_called_once()

    def test_hands_job_to_running_scheduler(self):
        scheduler = Mock(running=True)
        service_factory = Mock()
        runner = JobRunner(Mock(), service_factory, scheduler=scheduler)

        runner.submit(5)

        scheduler.add_job.assert_called_once()
        assert scheduler.add_job.call_args[1]["args"] == [5]
        service_factory.assert_not_called()

    def test_crash_is_logged_not_raised(self):
        session = Mock()
        service = Mock()
        service.execute.side_effect = RuntimeError("db gone")
        runner = JobRunner(lambda: session, lambda db: service)

        runner.run(5)

        session.close.assert_called_once()
