from .job import Job
from .project import Project
from .settings import Settings
from .subscription import Subscription
from .user import User

__all__ = ["Job", "Project", "Settings", "Subscription", "User"]
