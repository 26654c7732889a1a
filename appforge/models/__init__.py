from appforge.models.project import Project, ProjectStatus

__all__ = ["Project", "ProjectStatus"]
