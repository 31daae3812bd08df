from pydantic import BaseModel, ConfigDict, Field, field_validator, constr
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Any, Optional
import re


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _sanitize_name(name):
    if name:
        # Remove any HTML/script tags
        name = re.sub(r'<[^>]+>', '', name)
        return name.strip()
    return name


class NetworkConfigModel(ApiModel):
    name: constr(min_length=1, strip_whitespace=True)  # type: ignore
    rpc_url: Optional[str] = None
    chain_id: int = Field(gt=0)


class CompileRequest(ApiModel):
    source_code: Optional[str] = None
    contract_name: Optional[str] = None


class CompileResponse(ApiModel):
    success: bool
    abi: Optional[list] = None
    bytecode: Optional[str] = None
    contract_name: Optional[str] = None
    compiler_version: Optional[str] = None
    errors: list[dict] = []
    warnings: list[dict] = []


class ProjectCreate(ApiModel):
    name: constr(min_length=1, max_length=200, strip_whitespace=True)  # type: ignore
    template: str = "Custom"
    source_code: Optional[str] = None

    @field_validator("name")
    @classmethod
    def sanitize_name(cls, name):
        return _sanitize_name(name)


class ProjectUpdate(ApiModel):
    name: Optional[constr(min_length=1, max_length=200, strip_whitespace=True)] = None  # type: ignore
    source_code: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    target_network: Optional[NetworkConfigModel] = None

    @field_validator("name")
    @classmethod
    def sanitize_name(cls, name):
        return _sanitize_name(name)


class ProjectResponse(ApiModel):
    id: int
    name: str
    template: str
    owner: str
    source_code: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(default=None, validation_alias="project_metadata")
    target_network: Optional[dict[str, Any]] = None
    deployment_status: str
    deployment_error: Optional[str] = None
    deployed_address: Optional[str] = None
    deployed_network: Optional[dict[str, Any]] = None
    deploy_tx_hash: Optional[str] = None
    contract_name: Optional[str] = None
    compiler_version: Optional[str] = None
    abi: Optional[list] = None
    verification_status: Optional[str] = None
    verification_guid: Optional[str] = None
    verification_message: Optional[str] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DeployRequest(ApiModel):
    network_config: NetworkConfigModel
    contract_name: Optional[str] = None


class DeployResponse(ApiModel):
    message: str
    project: ProjectResponse
    job_id: int


class RecordDeploymentRequest(ApiModel):
    address: str
    tx_hash: str
    network: NetworkConfigModel
    contract_name: Optional[str] = None
    abi: Optional[list] = None
    compiler_version: Optional[str] = None


class VerifyRequest(ApiModel):
    license_type: Optional[int] = None
    constructor_args: Optional[str] = None


class VerifyResponse(ApiModel):
    message: str
    guid: str
    job_id: int


class JobResponse(ApiModel):
    id: int
    kind: str
    project_id: int
    status: str
    attempts: int
    payload: Optional[dict[str, Any]] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @field_validator("payload")
    @classmethod
    def hide_rpc_url(cls, payload):
        # RPC URLs often embed provider API keys
        if payload and isinstance(payload.get("networkConfig"), dict):
            network = {k: v for k, v in payload["networkConfig"].items() if k != "rpcUrl"}
            payload = {**payload, "networkConfig": network}
        return payload


class UserResponse(ApiModel):
    id: int
    wallet_address: str
    privy_user_id: str
    plan: str


class SubscriptionResponse(ApiModel):
    id: int
    plan: str
    status: str
    payment_amount: Optional[str] = None
    payment_tx_hash: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    auto_renew: Optional[bool] = None


class SubscriptionStatusResponse(ApiModel):
    plan: str
    subscription: Optional[SubscriptionResponse] = None


class PaymentIntentRequest(ApiModel):
    plan: str


class PaymentIntentResponse(ApiModel):
    subscription_id: int
    amount: str
    currency: str
    network: str
    recipient_address: str


class VerifyPaymentRequest(ApiModel):
    subscription_id: int
    tx_hash: constr(min_length=1, strip_whitespace=True)  # type: ignore


class VerifyPaymentResponse(ApiModel):
    confirmed: bool
    amount: str
    subscription: SubscriptionResponse
