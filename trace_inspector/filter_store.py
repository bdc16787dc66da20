"""Persistence of stack trace filter preferences.

Preferences are kept in a small JSON document:

    {
        "globalPackages": ["com.acme"],
        "projectPackages": {"orders-api": ["com.acme.orders"]},
        "noFilterProjects": ["legacy-batch"]
    }

Package resolution for a project: a "no filter" project gets no packages, a
project with its own non-empty packages gets those, anything else falls back to
the global packages.
"""

import json
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Set

import structlog

from .config import DEFAULT_FILTER_CONFIG_PATH

logger = structlog.get_logger(__name__)


def _empty_config() -> Dict:
    return {"globalPackages": [], "projectPackages": {}, "noFilterProjects": []}


def extract_repo_name(git_url: str) -> Optional[str]:
    """Repository name from an https or ssh git remote URL."""
    name = git_url.strip()
    if name.endswith(".git"):
        name = name[:-4]
    name = name.rsplit("/", 1)[-1]
    name = name.rsplit(":", 1)[-1]
    return name or None


def detect_current_project(cwd: Optional[Path] = None) -> Optional[str]:
    """Name of the project in the working directory.

    Uses the ``origin`` git remote when there is one, otherwise the
    directory name.
    """
    directory = Path(cwd) if cwd is not None else Path.cwd()
    try:
        completed = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            cwd=str(directory),
            capture_output=True,
            text=True,
            timeout=5
        )
        url = completed.stdout.strip() if completed.returncode == 0 else ""
        if url:
            return extract_repo_name(url)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("Could not read git remote", error=str(e))

    return directory.name or None


class FilterConfigStore:
    """Global and per-project relevant package prefixes, saved on every change."""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path is not None else DEFAULT_FILTER_CONFIG_PATH
        self._config = self._load()

    def is_configured(self) -> bool:
        """True once a preferences file exists."""
        return self.config_path.exists()

    def is_project_configured(self, project_name: Optional[str]) -> bool:
        if not project_name or not project_name.strip():
            return False
        return (project_name in self._config["noFilterProjects"]
                or project_name in self._config["projectPackages"])

    def get_relevant_packages(self, project_name: Optional[str] = None) -> List[str]:
        if project_name and project_name.strip():
            if project_name in self._config["noFilterProjects"]:
                return []
            project_packages = self._config["projectPackages"].get(project_name)
            if project_packages:
                return list(project_packages)
        return list(self._config["globalPackages"])

    def get_global_packages(self) -> List[str]:
        return list(self._config["globalPackages"])

    def get_project_packages(self, project_name: str) -> List[str]:
        return list(self._config["projectPackages"].get(project_name, []))

    def get_no_filter_projects(self) -> List[str]:
        return list(self._config["noFilterProjects"])

    def set_global_packages(self, packages: List[str]) -> None:
        if packages is None:
            raise ValueError("packages must not be None")
        self._config["globalPackages"] = list(packages)
        self._save()

    def set_project_packages(self, project_name: str, packages: List[str]) -> None:
        if not project_name:
            raise ValueError("project_name must not be blank")
        if packages is None:
            raise ValueError("packages must not be None")
        self._config["projectPackages"][project_name] = list(packages)
        self._discard_no_filter(project_name)
        self._save()

    def set_project_no_filter(self, project_name: str) -> None:
        if not project_name:
            raise ValueError("project_name must not be blank")
        self._config["projectPackages"].pop(project_name, None)
        if project_name not in self._config["noFilterProjects"]:
            self._config["noFilterProjects"].append(project_name)
        self._save()

    def clear_project_config(self, project_name: str) -> None:
        if not project_name:
            raise ValueError("project_name must not be blank")
        self._config["projectPackages"].pop(project_name, None)
        self._discard_no_filter(project_name)
        self._save()

    def get_configured_projects(self) -> Set[str]:
        return set(self._config["projectPackages"]) | set(self._config["noFilterProjects"])

    def _discard_no_filter(self, project_name: str) -> None:
        self._config["noFilterProjects"] = [
            name for name in self._config["noFilterProjects"] if name != project_name
        ]

    def _load(self) -> Dict:
        if not self.config_path.exists():
            return _empty_config()

        try:
            raw = json.loads(self.config_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Could not load filter config", path=str(self.config_path), error=str(e))
            return _empty_config()

        if not isinstance(raw, dict) or not isinstance(raw.get("projectPackages") or {}, dict):
            logger.warning("Ignoring malformed filter config", path=str(self.config_path))
            return _empty_config()

        config = _empty_config()
        config["globalPackages"] = list(raw.get("globalPackages") or [])
        config["projectPackages"] = {
            name: list(packages or [])
            for name, packages in (raw.get("projectPackages") or {}).items()
        }
        config["noFilterProjects"] = list(dict.fromkeys(raw.get("noFilterProjects") or []))
        return config

    def _save(self) -> None:
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            self.config_path.write_text(json.dumps(self._config, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning("Could not save filter config", path=str(self.config_path), error=str(e))
