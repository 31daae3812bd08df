from sqlalchemy.orm import Session
from db.models.project import Project
from datetime import datetime
from typing import Iterable


class ProjectRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, project: Project) -> Project:
        self.db.add(project)
        self.db.commit()
        self.db.refresh(project)
        return project

    def get_by_id(self, project_id: int, owner: str | None = None) -> Project | None:
        query = self.db.query(Project).filter(Project.id == project_id)
        if owner is not None:
            query = query.filter(Project.owner.ilike(owner))
        return query.first()

    def list_by_owner(self, owner: str) -> list[Project]:
        return (
            self.db.query(Project)
            .filter(Project.owner.ilike(owner))
            .order_by(Project.created_at.desc(), Project.id.desc())
            .all()
        )

    def count_by_owner(self, owner: str) -> int:
        return self.db.query(Project).filter(Project.owner.ilike(owner)).count()

    def update_fields(self, project: Project, update_data: dict) -> Project:
        for key, value in update_data.items():
            if hasattr(project, key):
                setattr(project, key, value)
        self.db.commit()
        self.db.refresh(project)
        return project

    def transition(
        self,
        project_id: int,
        expected_statuses: Iterable[str],
        new_status: str,
        expected_version: int | None = None,
        **fields,
    ) -> bool:
        """
        Conditionally move a project to new_status.

        The update only applies when the stored deployment_status is one of
        expected_statuses (and the version matches, if given). Returns False
        when another writer got there first.
        """
        query = self.db.query(Project).filter(
            Project.id == project_id,
            Project.deployment_status.in_(list(expected_statuses)),
        )
        if expected_version is not None:
            query = query.filter(Project.version == expected_version)
        values = {
            Project.deployment_status: new_status,
            Project.version: Project.version + 1,
            Project.updated_at: datetime.utcnow(),
        }
        for key, value in fields.items():
            values[getattr(Project, key)] = value
        updated = query.update(values, synchronize_session=False)
        self.db.commit()
        return updated == 1

    def transition_verification(
        self,
        project_id: int,
        expected_statuses: Iterable[str | None],
        new_status: str,
        expected_guid: str | None = None,
        **fields,
    ) -> bool:
        """
        Conditionally update verification_status of a deployed project.

        With expected_guid the update only applies while the project still
        tracks that explorer submission.
        """
        expected = list(expected_statuses)
        allowed = [s for s in expected if s is not None]
        condition = Project.verification_status.in_(allowed)
        if None in expected:
            condition = condition | Project.verification_status.is_(None)
        query = self.db.query(Project).filter(Project.id == project_id, condition)
        if expected_guid is not None:
            query = query.filter(Project.verification_guid == expected_guid)
        values = {
            Project.verification_status: new_status,
            Project.version: Project.version + 1,
            Project.updated_at: datetime.utcnow(),
        }
        for key, value in fields.items():
            values[getattr(Project, key)] = value
        updated = query.update(values, synchronize_session=False)
        self.db.commit()
        return updated == 1

    def delete(self, project: Project) -> None:
        self.db.delete(project)
        self.db.commit()

    def refresh(self, project: Project) -> Project:
        self.db.refresh(project)
        return project
