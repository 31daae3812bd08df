from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Index
from db.base import Base
from datetime import datetime

# Deployment status constants
DEPLOYMENT_DRAFT = "draft"
DEPLOYMENT_DEPLOYING = "deploying"
DEPLOYMENT_DEPLOYED = "deployed"
DEPLOYMENT_FAILED = "failed"

# Verification status constants
VERIFICATION_PENDING = "pending"
VERIFICATION_SUCCESS = "success"
VERIFICATION_FAILED = "failed"

TEMPLATES = ("ERC20", "ERC721", "Custom")


class Project(Base):
    __tablename__ = "projects"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    template = Column(String, nullable=False)
    owner = Column(String, nullable=False, index=True)  # Wallet address
    source_code = Column(Text, default="")
    project_metadata = Column("metadata", JSON, default=dict)
    target_network = Column(JSON, nullable=True)

    deployment_status = Column(String, nullable=False, default=DEPLOYMENT_DRAFT)
    deployment_error = Column(Text, nullable=True)
    deployed_address = Column(String, nullable=True)
    deployed_network = Column(JSON, nullable=True)  # {name, chainId}
    deploy_tx_hash = Column(String, nullable=True)
    contract_name = Column(String, nullable=True)
    compiler_version = Column(String, nullable=True)
    abi = Column(JSON, default=list)

    verification_status = Column(String, nullable=True)
    verification_guid = Column(String, nullable=True)
    verification_message = Column(Text, nullable=True)

    # Bumped on every status transition, used for conditional updates
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (Index("ix_projects_owner_created", "owner", "created_at"),)
