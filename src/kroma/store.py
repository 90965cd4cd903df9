"""Project store: the collection of projects a studio session edits."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .db import StudioDB
from .models import Project

logger = logging.getLogger(__name__)

# Fields callers may not overwrite through update()
_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})

ProjectChange = Callable[[Project], Dict[str, Any]]


def _merge(current: Project, fields: Dict[str, Any]) -> Project:
    blocked = _IMMUTABLE_FIELDS.intersection(fields)
    if blocked:
        raise ValueError(f"Cannot update immutable fields: {', '.join(sorted(blocked))}")

    data = current.model_dump()
    data.update(fields)
    data["last_modified"] = datetime.now()
    return Project.model_validate(data)


class ProjectStore(ABC):
    """Projects keyed by id.

    Methods are synchronous. Read-modify-write sequences go through
    ``mutate`` so they apply to the project as currently stored.
    """

    @abstractmethod
    def list(self) -> List[Project]:
        """Return all projects, most recently created first."""
        ...

    @abstractmethod
    def get(self, project_id: str) -> Optional[Project]:
        ...

    @abstractmethod
    def create(self, name: str) -> Project:
        ...

    @abstractmethod
    def mutate(self, project_id: str, change: ProjectChange) -> Optional[Project]:
        """Atomically shallow-merge ``change(current)`` into a project.

        ``change`` receives the project as currently stored and returns the
        fields to overwrite. If it raises, nothing is written. Always
        refreshes ``last_modified``.

        Returns:
            The updated project, or None if the id is unknown.
        """
        ...

    @abstractmethod
    def delete(self, project_id: str) -> bool:
        """Remove a project. Returns False if it was already gone."""
        ...

    def update(self, project_id: str, **fields: Any) -> Optional[Project]:
        """Shallow-merge ``fields`` into a project.

        Returns:
            The updated project, or None if the id is unknown.
        """
        return self.mutate(project_id, lambda project: fields)


class InMemoryProjectStore(ProjectStore):
    """Store holding projects for the lifetime of the process."""

    def __init__(self, projects: Optional[List[Project]] = None) -> None:
        # Insertion order is creation order; list() reverses it
        self._projects: Dict[str, Project] = {}
        for project in projects or []:
            self._projects[project.id] = project

    def list(self) -> List[Project]:
        return list(reversed(list(self._projects.values())))

    def get(self, project_id: str) -> Optional[Project]:
        return self._projects.get(project_id)

    def create(self, name: str) -> Project:
        project = Project(name=name)
        self._projects[project.id] = project
        logger.info(f"Created project {project.id} ({name})")
        return project

    def mutate(self, project_id: str, change: ProjectChange) -> Optional[Project]:
        current = self._projects.get(project_id)
        if current is None:
            return None
        updated = _merge(current, change(current))
        self._projects[project_id] = updated
        return updated

    def delete(self, project_id: str) -> bool:
        if self._projects.pop(project_id, None) is None:
            return False
        logger.info(f"Deleted project {project_id}")
        return True


class SqliteProjectStore(ProjectStore):
    """Store persisted in the studio database, one JSON document per project.

    Nothing is cached: every call reads the database, so deletions and
    edits made by other processes are seen, and ``mutate`` holds the write
    lock from its read to its write.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._db = StudioDB(path)

    @property
    def path(self) -> Path:
        return self._db.path

    def list(self) -> List[Project]:
        with self._db.connect() as conn:
            rows = conn.execute("SELECT data FROM projects ORDER BY rowid DESC").fetchall()
        return [Project.model_validate_json(row["data"]) for row in rows]

    def get(self, project_id: str) -> Optional[Project]:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT data FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
        return Project.model_validate_json(row["data"]) if row else None

    def create(self, name: str) -> Project:
        project = Project(name=name)
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT INTO projects(id, data) VALUES (?, ?)",
                (project.id, project.model_dump_json()),
            )
        logger.info(f"Created project {project.id} ({name})")
        return project

    def mutate(self, project_id: str, change: ProjectChange) -> Optional[Project]:
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT data FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
            if row is None:
                return None
            current = Project.model_validate_json(row["data"])
            updated = _merge(current, change(current))
            conn.execute(
                "UPDATE projects SET data = ? WHERE id = ?",
                (updated.model_dump_json(), project_id),
            )
        return updated

    def delete(self, project_id: str) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        if cursor.rowcount == 0:
            return False
        logger.info(f"Deleted project {project_id}")
        return True
