"""GitHub workflow generation and production deployment image updates."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional, Union

import yaml

from draftkit import osutil
from draftkit.prompts import DraftConfig, run_prompts_from_config_with_skips, run_select_prompt
from draftkit.writers import TemplateWriter

log = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

PARENT_DIR_NAME = "workflows"
CONFIG_FILE_NAME = "draft.yaml"
DEPLOY_TYPES = ("helm", "kustomize", "manifests")


class WorkflowError(ValueError):
    """Raised when workflows or deployment files cannot be processed."""


def _require_mapping(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise WorkflowError(f"cannot load {type(value).__name__} into {what}")
    return value


def _str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# --- GitHub workflow document -------------------------------------------------


@dataclass
class Push:
    branches: List[str] = field(default_factory=list)


@dataclass
class On:
    push: Push = field(default_factory=Push)
    workflow_dispatch: Any = None


@dataclass
class Job:
    permissions: Dict[str, str] = field(default_factory=dict)
    runs_on: str = ""
    needs: List[str] = field(default_factory=list)
    steps: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class GitHubWorkflow:
    """A loose model of a workflow file that allows editing jobs and their steps."""

    name: str = ""
    on: On = field(default_factory=On)
    env: Dict[str, str] = field(default_factory=dict)
    jobs: Dict[str, Job] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[Any, Any]]) -> "GitHubWorkflow":
        data = _require_mapping(data, "GitHubWorkflow")
        # YAML 1.1 loaders read a bare ``on`` key as the boolean true.
        on_data = _require_mapping(data.get("on", data.get(True)), "on")
        push_data = _require_mapping(on_data.get("push"), "push")
        jobs: Dict[str, Job] = {}
        for job_name, job_data in _require_mapping(data.get("jobs"), "jobs").items():
            job_data = _require_mapping(job_data, "job")
            jobs[str(job_name)] = Job(
                permissions={
                    str(k): _str(v)
                    for k, v in _require_mapping(job_data.get("permissions"), "permissions").items()
                },
                runs_on=_str(job_data.get("runs-on")),
                needs=[_str(n) for n in job_data.get("needs") or []],
                steps=[dict(_require_mapping(s, "step")) for s in job_data.get("steps") or []],
            )
        return cls(
            name=_str(data.get("name")),
            on=On(
                push=Push(branches=[_str(b) for b in push_data.get("branches") or []]),
                workflow_dispatch=on_data.get("workflow_dispatch"),
            ),
            env={str(k): _str(v) for k, v in _require_mapping(data.get("env"), "env").items()},
            jobs=jobs,
        )

    def to_dict(self) -> Dict[str, Any]:
        jobs: Dict[str, Any] = {}
        for job_name, job in self.jobs.items():
            job_dict: Dict[str, Any] = {
                "permissions": dict(job.permissions),
                "runs-on": job.runs_on,
            }
            if job.needs:
                job_dict["needs"] = list(job.needs)
            job_dict["steps"] = [dict(step) for step in job.steps]
            jobs[job_name] = job_dict
        return {
            "name": self.name,
            "on": {
                "push": {"branches": list(self.on.push.branches)},
                "workflow_dispatch": self.on.workflow_dispatch,
            },
            "env": dict(self.env),
            "jobs": jobs,
        }


# --- workflow flag configuration ---------------------------------------------


@dataclass
class WorkflowConfig:
    """Values given on the command line for workflow variables."""

    acr_name: str = ""
    container_name: str = ""
    resource_group_name: str = ""
    aks_cluster_name: str = ""
    branch_name: str = ""
    build_context_path: str = ""

    def set_flag_values_to_map(self) -> Dict[str, str]:
        """Return the non-empty values keyed by their template variable names."""
        pairs = (
            ("AZURECONTAINERREGISTRY", self.acr_name),
            ("CONTAINERNAME", self.container_name),
            ("RESOURCEGROUP", self.resource_group_name),
            ("CLUSTERNAME", self.aks_cluster_name),
            ("BRANCHNAME", self.branch_name),
            ("BUILDCONTEXTPATH", self.build_context_path),
        )
        return {key: value for key, value in pairs if value != ""}


# --- service manifests ----------------------------------------------------------


@dataclass
class HelmImage:
    repository: str = ""
    pull_policy: str = ""
    tag: str = ""


@dataclass
class HelmService:
    annotations: Dict[str, str] = field(default_factory=dict)
    service_type: str = ""
    port: str = ""


@dataclass
class HelmProductionYaml:
    """The image and service sections of a helm production values file."""

    image: HelmImage = field(default_factory=HelmImage)
    service: HelmService = field(default_factory=HelmService)

    @classmethod
    def from_dict(cls, data: Any) -> "HelmProductionYaml":
        data = _require_mapping(data, "HelmProductionYaml")
        image = _require_mapping(data.get("image"), "image")
        service = _require_mapping(data.get("service"), "service")
        return cls(
            image=HelmImage(
                repository=_str(image.get("repository")),
                pull_policy=_str(image.get("pullPolicy")),
                tag=_str(image.get("tag")),
            ),
            service=HelmService(
                annotations={
                    str(k): _str(v)
                    for k, v in _require_mapping(service.get("annotations"), "annotations").items()
                },
                service_type=_str(service.get("type")),
                port=_str(service.get("port")),
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image": {
                "repository": self.image.repository,
                "pullPolicy": self.image.pull_policy,
                "tag": self.image.tag,
            },
            "service": {
                "annotations": dict(self.service.annotations),
                "type": self.service.service_type,
                "port": self.service.port,
            },
        }

    def to_yaml(self) -> bytes:
        return yaml.safe_dump(self.to_dict(), sort_keys=False).encode("utf-8")

    def set_annotations(self, annotations: Mapping[str, str]) -> None:
        self.service.annotations = dict(annotations)

    def set_service_type(self, service_type: str) -> None:
        self.service.service_type = service_type

    def get_service_name(self) -> str:
        return '{{ include "{{APPNAME}}.fullname" . }}'

    def load_from_file(self, file_path: PathLike) -> None:
        loaded = HelmProductionYaml.from_dict(yaml.safe_load(Path(file_path).read_bytes()))
        self.image = loaded.image
        self.service = loaded.service

    def write_to_file(self, file_path: PathLike) -> None:
        fd = os.open(file_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o755)
        with os.fdopen(fd, "wb") as handle:
            handle.write(self.to_yaml())


def _load_k8s_object(file_path: PathLike) -> Dict[str, Any]:
    obj = yaml.safe_load(Path(file_path).read_bytes())
    if not isinstance(obj, Mapping):
        raise WorkflowError(f"could not decode kubernetes object in {file_path}")
    if not obj.get("apiVersion"):
        raise WorkflowError(f"Object 'apiVersion' is missing in {file_path}")
    if not obj.get("kind"):
        raise WorkflowError(f"Object 'Kind' is missing in {file_path}")
    return dict(obj)


def _rewrite_existing(file_path: PathLike, obj: Mapping[str, Any]) -> None:
    try:
        handle = open(file_path, "r+b")
    except OSError as err:
        log.debug("could not open %s for writing: %s", file_path, err)
        return
    with handle:
        handle.truncate(0)
        handle.write(yaml.safe_dump(dict(obj), sort_keys=False).encode("utf-8"))


@dataclass
class ServiceYaml:
    """A kubernetes Service manifest."""

    service: Dict[str, Any] = field(default_factory=dict)

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.service.get(name)
        if not isinstance(section, dict):
            section = {}
            self.service[name] = section
        return section

    def set_annotations(self, annotations: Mapping[str, str]) -> None:
        self._section("metadata")["annotations"] = dict(annotations)

    def set_service_type(self, service_type: str) -> None:
        self._section("spec")["type"] = service_type

    def get_service_name(self) -> str:
        metadata = self.service.get("metadata") or {}
        return _str(metadata.get("name"))

    def load_from_file(self, file_path: PathLike) -> None:
        obj = _load_k8s_object(file_path)
        if obj.get("kind") != "Service" or obj.get("apiVersion") != "v1":
            raise WorkflowError("could not load file into ServiceYaml")
        self.service = obj

    def write_to_file(self, file_path: PathLike) -> None:
        _rewrite_existing(file_path, self.service)


# --- production deployment updates --------------------------------------------


def set_deployment_container_image(file_path: PathLike, production_image: str) -> None:
    """Set the image of the single container in a Deployment manifest."""
    deploy = _load_k8s_object(file_path)
    if deploy.get("kind") != "Deployment" or deploy.get("apiVersion") != "apps/v1":
        raise WorkflowError("could not decode kubernetes deployment")

    pod_spec = ((deploy.get("spec") or {}).get("template") or {}).get("spec") or {}
    containers = pod_spec.get("containers") or []
    if len(containers) != 1:
        raise WorkflowError("unsupported number of containers defined in the deployment spec")
    containers[0]["image"] = production_image

    _rewrite_existing(file_path, deploy)


def set_helm_container_image(
    file_path: PathLike, production_image: str, template_writer: TemplateWriter
) -> None:
    """Set the image repository in a helm production values file."""
    deploy = HelmProductionYaml.from_dict(yaml.safe_load(Path(file_path).read_bytes()))
    deploy.image.repository = production_image
    template_writer.write_file(os.fspath(file_path), deploy.to_yaml())


def update_production_deployments(
    deploy_type: str,
    dest: str,
    flag_values_map: Mapping[str, str],
    template_writer: TemplateWriter,
) -> None:
    """Point the production deployment of ``deploy_type`` at the registry image."""
    production_image = (
        f"{flag_values_map.get('AZURECONTAINERREGISTRY', '')}.azurecr.io/"
        f"{flag_values_map.get('CONTAINERNAME', '')}"
    )
    if deploy_type == "helm":
        set_helm_container_image(f"{dest}/charts/production.yaml", production_image, template_writer)
    elif deploy_type == "kustomize":
        set_deployment_container_image(f"{dest}/overlays/production/deployment.yaml", production_image)
    elif deploy_type == "manifests":
        set_deployment_container_image(f"{dest}/manifests/deployment.yaml", production_image)


# --- workflow templates -----------------------------------------------------------


class Workflows:
    """The workflow templates available under ``template_root/workflows``."""

    def __init__(self, workflows: Mapping[str, str], dest: str, template_root: PathLike) -> None:
        self.workflows: Dict[str, str] = dict(workflows)
        self.configs: Dict[str, DraftConfig] = {}
        self.dest = dest
        self.template_root = Path(template_root)

    @classmethod
    def from_directory(cls, template_root: PathLike, dest: str) -> "Workflows":
        parent = Path(template_root) / PARENT_DIR_NAME
        names = {entry.name: entry.name for entry in parent.iterdir() if entry.is_dir()}
        workflows = cls(names, dest, template_root)
        workflows.populate_configs()
        return workflows

    def load_config(self, deploy_type: str) -> DraftConfig:
        """Read the ``draft.yaml`` of a deploy type's templates."""
        try:
            dir_name = self.workflows[deploy_type]
        except KeyError:
            raise WorkflowError(f"deploy type {deploy_type} unsupported") from None
        config_path = self.template_root / PARENT_DIR_NAME / dir_name / CONFIG_FILE_NAME
        data = yaml.safe_load(config_path.read_bytes())
        try:
            return DraftConfig.from_dict(data)
        except TypeError as err:
            raise WorkflowError(f"invalid config {config_path}: {err}") from err

    def populate_configs(self) -> None:
        """Load every deploy type's config, using an empty one where loading fails."""
        for deploy_type in self.workflows:
            try:
                config = self.load_config(deploy_type)
            except (OSError, ValueError, yaml.YAMLError):
                log.debug("no draftConfig found for workflow of deploy type %s", deploy_type)
                config = DraftConfig()
            self.configs[deploy_type] = config

    def create_workflow_files(
        self,
        deploy_type: str,
        custom_inputs: Mapping[str, str],
        template_writer: TemplateWriter,
    ) -> None:
        """Render the deploy type's workflow templates into the destination."""
        try:
            dir_name = self.workflows[deploy_type]
        except KeyError:
            raise WorkflowError(
                f"deployment type: {deploy_type} is not currently supported"
            ) from None
        src_dir = f"{PARENT_DIR_NAME}/{dir_name}"
        log.debug("source directory for workflow template: %s", src_dir)
        osutil.copy_dir(self.template_root, src_dir, self.dest, custom_inputs, template_writer)


def create_workflows(
    dest: str,
    deploy_type: str,
    flag_variables: Iterable[str],
    template_writer: TemplateWriter,
    flag_values_map: Optional[MutableMapping[str, str]],
    template_root: PathLike,
) -> None:
    """Generate the GitHub workflow for ``deploy_type`` into ``dest``.

    ``flag_variables`` are ``NAME=value`` strings added to ``flag_values_map``;
    variables not given there are prompted for.
    """
    if flag_values_map is None:
        raise WorkflowError("flagValuesMap is nil")
    for flag_var in flag_variables:
        name, sep, value = flag_var.partition("=")
        if not sep:
            raise WorkflowError(f"invalid variable format: {flag_var}")
        flag_values_map[name] = value
        log.debug("flag variable %s=%s", name, value)

    if deploy_type == "":
        deploy_type = run_select_prompt("Select k8s Deployment Type", list(DEPLOY_TYPES))

    workflows = Workflows.from_directory(template_root, dest)
    try:
        workflow_config = workflows.configs[deploy_type]
    except KeyError:
        raise WorkflowError("invalid deployment type") from None

    custom_inputs = run_prompts_from_config_with_skips(workflow_config, list(flag_values_map))
    custom_inputs.update(flag_values_map)

    update_production_deployments(deploy_type, dest, custom_inputs, template_writer)
    workflows.create_workflow_files(deploy_type, custom_inputs, template_writer)