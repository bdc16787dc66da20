"""Stack trace filter configuration tool implementation for MCP."""

from typing import Any, Dict, List

import structlog
from mcp.types import Tool, TextContent

from ..filter_store import detect_current_project
from .arguments import optional_string, required_string, required_string_list
from .base import BaseDatadogTool, json_content

logger = structlog.get_logger(__name__)

ACTIONS = ("status", "set_global", "set_project", "set_no_filter", "clear_project")

UNKNOWN_PROJECT = "unknown-project"


class FilterConfigureTool(BaseDatadogTool):
    """MCP tool managing which packages count as application code in stack traces."""

    tool_name = "filter_configure"

    def get_tool_definition(self) -> Tool:
        return Tool(
            name=self.tool_name,
            description=(
                "Configure stack trace filtering: global or per-project package "
                "prefixes to keep when filtering framework frames"
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "action": {
                        "type": "string",
                        "description": (
                            "Action to perform: 'status' returns current configuration "
                            "and whether setup is needed, 'set_global' sets global package "
                            "filters, 'set_project' sets filters for current project, "
                            "'set_no_filter' marks current project as not wanting filters, "
                            "'clear_project' removes project-specific configuration"
                        ),
                        "enum": list(ACTIONS)
                    },
                    "packages": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": (
                            "Package prefixes to keep in stack traces "
                            "(e.g., ['com.mycompany']). Required for 'set_global' "
                            "and 'set_project' actions."
                        )
                    },
                    "projectName": {
                        "type": "string",
                        "description": (
                            "Project name. If not provided, auto-detects from git repo "
                            "or directory name."
                        )
                    }
                },
                "required": ["action"]
            }
        )

    def run(self, arguments: Dict[str, Any]) -> List[TextContent]:
        action = required_string(arguments, "action")
        handlers = {
            "status": self._status,
            "set_global": self._set_global,
            "set_project": self._set_project,
            "set_no_filter": self._set_no_filter,
            "clear_project": self._clear_project,
        }
        if action not in handlers:
            raise ValueError(f"Unknown action: {action}")

        logger.info("Configuring stack trace filters", action=action)
        return [json_content(handlers[action](arguments))]

    def _project_name(self, arguments: Dict[str, Any]) -> str:
        project_name = optional_string(arguments, "projectName")
        if project_name and project_name.strip():
            return project_name
        return detect_current_project() or UNKNOWN_PROJECT

    def _status(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        store = self.get_filter_store()
        project_name = self._project_name(arguments)
        configured = store.is_configured()
        project_configured = store.is_project_configured(project_name)

        result: Dict[str, Any] = {
            "success": True,
            "configured": configured,
            "currentProject": project_name,
            "projectConfigured": project_configured,
        }

        if configured:
            result["globalPackages"] = store.get_global_packages()
            result["projectPackages"] = store.get_project_packages(project_name)
            result["effectivePackages"] = store.get_relevant_packages(project_name)
            result["configuredProjects"] = sorted(store.get_configured_projects())

        if not configured:
            result["setupRequired"] = True
            result["message"] = (
                "No filter configuration found. Ask the user if they want to: "
                "(1) Set global filters that apply to all projects, "
                f"(2) Set project-specific filters for '{project_name}', or "
                "(3) Show full stack traces without any filtering."
            )
        elif not project_configured and not store.get_global_packages():
            result["setupRequired"] = True
            result["message"] = (
                f"No filters configured for project '{project_name}' "
                "and no global filters set. Ask the user if they want to configure filters."
            )
        else:
            result["setupRequired"] = False

        return result

    def _set_global(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        packages = required_string_list(arguments, "packages")
        self.get_filter_store().set_global_packages(packages)
        return {
            "success": True,
            "action": "set_global",
            "packages": packages,
            "message": (
                "Global filters configured. These will apply to all projects "
                "unless overridden with project-specific settings."
            ),
        }

    def _set_project(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        project_name = self._project_name(arguments)
        packages = required_string_list(arguments, "packages")
        self.get_filter_store().set_project_packages(project_name, packages)
        return {
            "success": True,
            "action": "set_project",
            "projectName": project_name,
            "packages": packages,
            "message": (
                f"Filters configured for project '{project_name}'. "
                "These settings will be used for future log searches in this project."
            ),
        }

    def _set_no_filter(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        project_name = self._project_name(arguments)
        self.get_filter_store().set_project_no_filter(project_name)
        return {
            "success": True,
            "action": "set_no_filter",
            "projectName": project_name,
            "message": (
                f"Project '{project_name}' configured to show full stack traces "
                "without filtering. This setting will be remembered for future log searches."
            ),
        }

    def _clear_project(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        project_name = self._project_name(arguments)
        self.get_filter_store().clear_project_config(project_name)
        return {
            "success": True,
            "action": "clear_project",
            "projectName": project_name,
            "message": (
                f"Project-specific configuration cleared for '{project_name}'. "
                "Global filters will be used instead."
            ),
        }


_filter_configure_tool = FilterConfigureTool()


def get_filter_configure_tool() -> FilterConfigureTool:
    """Get the filter configuration tool instance."""
    return _filter_configure_tool
