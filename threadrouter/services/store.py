"""
Store contract and in-memory implementation.

The core reads Flow / Input / Output / UserMapping records owned by the admin
layer and writes Discussion, Job and resolver-produced UserMapping records.
Everything goes through the narrow Store protocol below; InMemoryStore backs
standalone runs and tests, optionally seeded from a YAML file.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import yaml

from threadrouter.models.records import (
    Discussion,
    Flow,
    Input,
    Job,
    Output,
    UserMapping,
    MappingType,
    utcnow,
)

logger = logging.getLogger(__name__)


class RecordNotFoundError(LookupError):
    """Raised when a record addressed by ID does not exist."""

    retryable = False


class Store(Protocol):
    """Narrow read/write contract the pipeline depends on."""

    async def find_inputs(self, platform: str, workspace_id: str) -> List[Input]: ...

    async def get_input(self, input_id: str) -> Optional[Input]: ...

    async def get_flow(self, flow_id: str) -> Optional[Flow]: ...

    async def list_outputs(self, flow_id: str) -> List[Output]: ...

    async def create_discussion(self, discussion: Discussion) -> Discussion: ...

    async def get_discussion(self, discussion_id: str) -> Optional[Discussion]: ...

    async def update_discussion(self, discussion_id: str, patch: Dict[str, Any]) -> Discussion: ...

    async def create_job(self, job: Job) -> Job: ...

    async def get_job(self, job_id: str) -> Optional[Job]: ...

    async def get_active_job(self, discussion_id: str) -> Optional[Job]: ...

    async def list_jobs(self, discussion_id: str) -> List[Job]: ...

    async def persist_job_transition(self, job_id: str, patch: Dict[str, Any]) -> Job: ...

    async def find_user_mapping(
        self,
        source_platform: str,
        source_workspace_id: str,
        source_user_id: str,
        destination_platform: str,
    ) -> Optional[UserMapping]: ...

    async def find_user_mapping_by_email(
        self,
        source_platform: str,
        source_workspace_id: str,
        email: str,
        destination_platform: str,
    ) -> Optional[UserMapping]: ...

    async def persist_user_mapping(self, mapping: UserMapping) -> UserMapping: ...


class InMemoryStore:
    """
    Thread-safe in-memory Store.

    Records are copied on the way in and out so callers never share mutable
    state through the store.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._flows: Dict[str, Flow] = {}
        self._inputs: Dict[str, Input] = {}
        self._outputs: Dict[str, Output] = {}
        self._discussions: Dict[str, Discussion] = {}
        self._jobs: Dict[str, Job] = {}
        self._mappings: Dict[str, UserMapping] = {}

    # Seeding (admin layer stand-in)

    def add_flow(self, flow: Flow) -> Flow:
        with self._lock:
            self._flows[flow.id] = flow.model_copy(deep=True)
        return flow

    def add_input(self, input_: Input) -> Input:
        with self._lock:
            self._inputs[input_.id] = input_.model_copy(deep=True)
        return input_

    def add_output(self, output: Output) -> Output:
        with self._lock:
            self._outputs[output.id] = output.model_copy(deep=True)
        return output

    def add_user_mapping(self, mapping: UserMapping) -> UserMapping:
        with self._lock:
            self._mappings[mapping.id] = mapping.model_copy(deep=True)
        return mapping

    def remove_flow(self, flow_id: str) -> None:
        """Delete a flow without touching its inputs and outputs."""
        with self._lock:
            self._flows.pop(flow_id, None)

    @classmethod
    def from_yaml(cls, path: str) -> "InMemoryStore":
        """
        Build a store from a YAML file of flows.

        Format:
            flows:
              - id: flow_design
                name: Design feedback
                accepted_topics: [design, bug]
                inputs:
                  - platform: slack
                    workspace_id: T0123
                    credentials: {bot_token: xoxb-...}
                outputs:
                  - name: Design board
                    is_default: true
                    settings: {platform: notion, database_id: ...}
            user_mappings:
              - {source_platform: slack, source_workspace_id: T0123, ...}
        """
        store = cls()
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}

        for flow_data in data.get("flows", []):
            inputs = flow_data.pop("inputs", [])
            outputs = flow_data.pop("outputs", [])
            flow = store.add_flow(Flow.model_validate(flow_data))
            for input_data in inputs:
                store.add_input(Input.model_validate({**input_data, "flow_id": flow.id}))
            for output_data in outputs:
                store.add_output(Output.model_validate({**output_data, "flow_id": flow.id}))

        for mapping_data in data.get("user_mappings", []):
            store.add_user_mapping(UserMapping.model_validate(mapping_data))

        logger.info(
            f"Loaded {len(store._flows)} flows, {len(store._inputs)} inputs and "
            f"{len(store._outputs)} outputs from {path}"
        )
        return store

    # Configuration reads

    async def find_inputs(self, platform: str, workspace_id: str) -> List[Input]:
        with self._lock:
            return [
                i.model_copy(deep=True)
                for i in self._inputs.values()
                if i.platform == platform and i.workspace_id == workspace_id
            ]

    async def get_input(self, input_id: str) -> Optional[Input]:
        with self._lock:
            found = self._inputs.get(input_id)
            return found.model_copy(deep=True) if found else None

    async def get_flow(self, flow_id: str) -> Optional[Flow]:
        with self._lock:
            found = self._flows.get(flow_id)
            return found.model_copy(deep=True) if found else None

    async def list_outputs(self, flow_id: str) -> List[Output]:
        with self._lock:
            return [
                o.model_copy(deep=True)
                for o in self._outputs.values()
                if o.flow_id == flow_id
            ]

    # Discussions

    async def create_discussion(self, discussion: Discussion) -> Discussion:
        with self._lock:
            self._discussions[discussion.id] = discussion.model_copy(deep=True)
        return discussion

    async def get_discussion(self, discussion_id: str) -> Optional[Discussion]:
        with self._lock:
            found = self._discussions.get(discussion_id)
            return found.model_copy(deep=True) if found else None

    async def update_discussion(self, discussion_id: str, patch: Dict[str, Any]) -> Discussion:
        with self._lock:
            current = self._discussions.get(discussion_id)
            if current is None:
                raise RecordNotFoundError(f"Discussion not found: {discussion_id}")
            updated = current.model_copy(update={**patch, "updated_at": utcnow()}, deep=True)
            self._discussions[discussion_id] = updated
            return updated.model_copy(deep=True)

    # Jobs

    async def create_job(self, job: Job) -> Job:
        with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)
        return job

    async def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            found = self._jobs.get(job_id)
            return found.model_copy(deep=True) if found else None

    async def get_active_job(self, discussion_id: str) -> Optional[Job]:
        with self._lock:
            for job in self._jobs.values():
                if job.discussion_id == discussion_id and job.is_active:
                    return job.model_copy(deep=True)
        return None

    async def list_jobs(self, discussion_id: str) -> List[Job]:
        """Jobs of a discussion, newest first."""
        with self._lock:
            jobs = [j for j in self._jobs.values() if j.discussion_id == discussion_id]
            jobs.sort(key=lambda j: j.created_at, reverse=True)
            return [j.model_copy(deep=True) for j in jobs]

    async def persist_job_transition(self, job_id: str, patch: Dict[str, Any]) -> Job:
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise RecordNotFoundError(f"Job not found: {job_id}")
            updated = current.model_copy(update={**patch, "updated_at": utcnow()}, deep=True)
            self._jobs[job_id] = updated
            return updated.model_copy(deep=True)

    # User mappings

    async def find_user_mapping(
        self,
        source_platform: str,
        source_workspace_id: str,
        source_user_id: str,
        destination_platform: str,
    ) -> Optional[UserMapping]:
        with self._lock:
            for m in self._mappings.values():
                if (
                    m.source_platform == source_platform
                    and m.source_workspace_id == source_workspace_id
                    and m.source_user_id == source_user_id
                    and m.destination_platform == destination_platform
                ):
                    return m.model_copy(deep=True)
        return None

    async def find_user_mapping_by_email(
        self,
        source_platform: str,
        source_workspace_id: str,
        email: str,
        destination_platform: str,
    ) -> Optional[UserMapping]:
        target = email.strip().lower()
        with self._lock:
            for m in self._mappings.values():
                if (
                    m.source_platform == source_platform
                    and m.source_workspace_id == source_workspace_id
                    and m.destination_platform == destination_platform
                    and m.mapping_type != MappingType.DISCOVERED_UNMAPPED
                    and m.destination_user_id
                    and (m.source_user_email or "").strip().lower() == target
                ):
                    return m.model_copy(deep=True)
        return None

    async def persist_user_mapping(self, mapping: UserMapping) -> UserMapping:
        """Insert or replace the mapping for the same source user and destination."""
        with self._lock:
            for existing_id, m in list(self._mappings.items()):
                if (
                    m.source_platform == mapping.source_platform
                    and m.source_workspace_id == mapping.source_workspace_id
                    and m.source_user_id == mapping.source_user_id
                    and m.destination_platform == mapping.destination_platform
                ):
                    del self._mappings[existing_id]
            self._mappings[mapping.id] = mapping.model_copy(deep=True)
        return mapping
