"""
Workflow Manager - Save, load, and manage mini-service pipelines
Backend persistence plus local drafts with atomic JSON writes
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from serviceforge.agent_catalog import AgentCatalog
from serviceforge.api_models import PipelineCreateRequest, ServiceDetails
from serviceforge.backend_client import BackendClient
from serviceforge.errors import ServiceForgeError, ValidationError
from serviceforge.logger_config import get_logger

from .orchestration_parser import PipelineParser
from .workflow_graph import WorkflowGraph

logger = get_logger("serviceforge.workflow_manager")


class PipelineStore:
    """
    Manages pipeline lifecycle: save, list, delete on the backend and
    draft save/load/import/export on disk.
    """

    def __init__(self, client: BackendClient, drafts_dir: Optional[str] = None):
        """
        Initialize pipeline store.

        Args:
            client: Backend client
            drafts_dir: Directory for local draft JSON files
        """
        self.client = client
        self.drafts_dir = Path(drafts_dir or client.settings.drafts_dir)
        self.parser = PipelineParser()
        self._pipelines: List[Dict[str, Any]] = []
        self._draft_cache: Dict[str, Dict[str, Any]] = {}
        self._ensure_storage_dir()

    def _ensure_storage_dir(self):
        """Create drafts directory if it doesn't exist"""
        try:
            self.drafts_dir.mkdir(parents=True, exist_ok=True)

            gitignore_path = self.drafts_dir / ".gitignore"
            if not gitignore_path.exists():
                gitignore_path.write_text("*\n!.gitignore\n")

        except OSError as e:
            logger.warning(f"Could not create drafts directory: {e}")

    def _sanitize_filename(self, name: str) -> str:
        """Sanitize draft name for filename"""
        safe = "".join(c if c.isalnum() or c in (' ', '-', '_') else '_' for c in name)
        return safe.strip().replace(' ', '_')[:100]

    # ------------------------------------------------------------------
    # Backend persistence
    # ------------------------------------------------------------------

    def build_payload(self, graph: WorkflowGraph, details: ServiceDetails) -> PipelineCreateRequest:
        """Create-request body with the chain re-indexed to dense keys"""
        return PipelineCreateRequest.model_validate({
            "name": details.name,
            "description": details.description,
            "input_type": graph.input_type,
            "output_type": graph.output_type,
            "workflow": {"nodes": graph.to_nodes()},
            "icon": details.icon,
            "color": details.color,
            "placeholder": details.placeholder,
            "button_text": details.button_text,
            "is_public": details.is_public,
        })

    def deploy_problems(self, graph: WorkflowGraph, details: ServiceDetails) -> List[str]:
        """Everything that blocks saving; empty when the pipeline can be saved"""
        problems = []
        if not details.name.strip():
            problems.append("Service name is required")
        if graph.is_empty():
            problems.append("Add at least one agent to the workflow")
            return problems

        graph.check_integrity()
        unknown = [step.agent_id for step in graph.ordered_sequence() if step.agent_id not in graph.catalog]
        if unknown:
            problems.append(f"Agents no longer available: {', '.join(unknown)}")
        problems.extend(graph.compatibility_problems())
        return problems

    def save_pipeline(self, graph: WorkflowGraph, details: ServiceDetails) -> Any:
        """
        Validate and create the pipeline on the backend.

        Returns:
            Backend response for the created service

        Raises:
            ValidationError: the pipeline can't be deployed as is
            IntegrityError: the step chain is corrupt
        """
        problems = self.deploy_problems(graph, details)
        if problems:
            raise ValidationError("; ".join(problems))

        payload = self.build_payload(graph, details)
        created = self.client.create_pipeline(payload.model_dump())
        if isinstance(created, dict):
            self._pipelines.append(created)
        logger.info(f"Service '{details.name}' saved with {len(graph)} steps")
        return created

    @property
    def pipelines(self) -> List[Dict[str, Any]]:
        return list(self._pipelines)

    def list_pipelines(self) -> List[Dict[str, Any]]:
        """Fetch the user's services and replace the cached list"""
        self._pipelines = list(self.client.list_pipelines())
        return self.pipelines

    def get_pipeline(self, pipeline_id: Any) -> Dict[str, Any]:
        return self.client.get_pipeline(pipeline_id)

    def load_graph(self, pipeline_id: Any, catalog: AgentCatalog) -> WorkflowGraph:
        """Fetch a stored service and parse it into a runnable graph"""
        return self.parser.parse_workflow(self.get_pipeline(pipeline_id), catalog)

    def delete_pipeline(self, pipeline_id: Any) -> None:
        """
        Delete a service, removing it from the cached list first.

        If the backend call fails the cache is rebuilt from the backend, or
        restored from before the removal when that refresh fails too.
        """
        snapshot = list(self._pipelines)
        self._pipelines = [p for p in self._pipelines if str(p.get("id")) != str(pipeline_id)]

        try:
            self.client.delete_pipeline(pipeline_id)
        except ServiceForgeError as e:
            logger.error(f"Error deleting service {pipeline_id}: {e}")
            try:
                self.list_pipelines()
            except ServiceForgeError as refresh_error:
                logger.error(f"Could not refresh services after failed delete: {refresh_error}")
                self._pipelines = snapshot
            raise

        logger.info(f"Service {pipeline_id} deleted")

    # ------------------------------------------------------------------
    # Local drafts
    # ------------------------------------------------------------------

    def save_draft(self, graph: WorkflowGraph, details: ServiceDetails, draft_name: Optional[str] = None) -> bool:
        """
        Save an unfinished pipeline to disk.

        Args:
            graph: Pipeline being assembled
            details: Service details entered so far
            draft_name: Optional name override

        Returns:
            True if successful, False otherwise
        """
        name = draft_name or details.name or "Untitled Service"
        try:
            safe_name = self._sanitize_filename(name)
            file_path = self.drafts_dir / f"{safe_name}.json"

            existing = self._read_draft_file(file_path)
            now = datetime.now().isoformat()
            draft_data = {
                "name": name,
                "created_at": existing.get("created_at", now) if existing else now,
                "updated_at": now,
                "service": self.build_payload(graph, details).model_dump(),
                "metadata": {
                    "step_count": len(graph),
                    "saved_by": "pipeline_store"
                }
            }

            temp_path = file_path.with_suffix('.tmp')
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(draft_data, f, indent=2, ensure_ascii=False)

            temp_path.replace(file_path)
            self._draft_cache[safe_name] = draft_data

            logger.info(f"Draft '{name}' saved successfully")
            return True

        except (OSError, ValueError) as e:
            logger.error(f"Error saving draft '{name}': {e}")
            return False

    def _read_draft_file(self, file_path: Path) -> Optional[Dict[str, Any]]:
        if not file_path.exists():
            return None
        with open(file_path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def load_draft(self, draft_name: str) -> Optional[Dict[str, Any]]:
        """
        Load a draft from disk.

        Returns:
            Stored service payload or None if not found
        """
        try:
            safe_name = self._sanitize_filename(draft_name)

            if safe_name in self._draft_cache:
                return self._draft_cache[safe_name].get("service")

            draft_data = self._read_draft_file(self.drafts_dir / f"{safe_name}.json")
            if draft_data is None:
                logger.warning(f"Draft '{draft_name}' not found")
                return None

            self._draft_cache[safe_name] = draft_data
            return draft_data.get("service")

        except (OSError, ValueError) as e:
            logger.error(f"Error loading draft '{draft_name}': {e}")
            return None

    def restore_draft(self, draft_name: str, catalog: AgentCatalog) -> Optional[Tuple[WorkflowGraph, ServiceDetails]]:
        """Rebuild the graph and service details stored in a draft"""
        service = self.load_draft(draft_name)
        if service is None:
            return None
        graph = self.parser.parse_workflow(service, catalog)
        details = ServiceDetails.model_validate({
            key: service[key] for key in ServiceDetails.model_fields if key in service
        })
        return graph, details

    def list_drafts(self) -> List[Dict[str, Any]]:
        """
        List all saved drafts.

        Returns:
            List of draft metadata, most recently updated first
        """
        drafts = []
        for file_path in self.drafts_dir.glob("*.json"):
            try:
                draft_data = self._read_draft_file(file_path)
            except (OSError, ValueError) as e:
                logger.warning(f"Error reading draft file {file_path}: {e}")
                continue

            drafts.append({
                "name": draft_data.get("name", file_path.stem),
                "created_at": draft_data.get("created_at", ""),
                "updated_at": draft_data.get("updated_at", ""),
                "step_count": draft_data.get("metadata", {}).get("step_count", 0)
            })

        drafts.sort(key=lambda x: x.get("updated_at", ""), reverse=True)
        return drafts

    def draft_exists(self, draft_name: str) -> bool:
        return (self.drafts_dir / f"{self._sanitize_filename(draft_name)}.json").exists()

    def delete_draft(self, draft_name: str) -> bool:
        """
        Delete a draft.

        Returns:
            True if successful, False otherwise
        """
        try:
            safe_name = self._sanitize_filename(draft_name)
            file_path = self.drafts_dir / f"{safe_name}.json"

            if not file_path.exists():
                logger.warning(f"Draft '{draft_name}' not found")
                return False

            file_path.unlink()
            self._draft_cache.pop(safe_name, None)

            logger.info(f"Draft '{draft_name}' deleted")
            return True

        except OSError as e:
            logger.error(f"Error deleting draft '{draft_name}': {e}")
            return False

    def export_draft(self, draft_name: str, export_path: str) -> bool:
        """Write a draft's service payload to a standalone JSON file"""
        try:
            service = self.load_draft(draft_name)
            if not service:
                return False

            with open(Path(export_path), 'w', encoding='utf-8') as f:
                json.dump(service, f, indent=2, ensure_ascii=False)

            logger.info(f"Draft '{draft_name}' exported to {export_path}")
            return True

        except OSError as e:
            logger.error(f"Error exporting draft '{draft_name}': {e}")
            return False

    def import_draft(self, import_path: str, catalog: AgentCatalog, draft_name: Optional[str] = None) -> bool:
        """
        Import an exported service payload as a draft.

        Args:
            import_path: Path to the exported JSON file
            catalog: Agent catalog used to rebuild the graph
            draft_name: Optional name override

        Returns:
            True if successful, False otherwise
        """
        try:
            import_file = Path(import_path)
            if not import_file.exists():
                logger.error(f"Import file not found: {import_path}")
                return False

            with open(import_file, 'r', encoding='utf-8') as f:
                service = json.load(f)

            graph = self.parser.parse_workflow(service, catalog)
            details = ServiceDetails.model_validate({
                key: service[key] for key in ServiceDetails.model_fields if key in service
            })
            return self.save_draft(graph, details, draft_name=draft_name)

        except (OSError, ValueError, ServiceForgeError) as e:
            logger.error(f"Error importing draft from {import_path}: {e}")
            return False
