# loader.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import List

from .config import load_yaml_workflow
from .errors import ConfigurationError
from .model import Pipeline

DEFAULT_WORKFLOW = "ciflow_workflow.py"
YAML_SUFFIXES = (".yml", ".yaml")


def _load_python_workflow(wf_path: Path) -> Pipeline:
    """
    The file must define either:
      - workflow() -> Pipeline
      - PIPELINE = Pipeline(...)
    """
    module_name = f"ciflow_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    result = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        result = globals_dict["workflow"]()
    elif "PIPELINE" in globals_dict:
        result = globals_dict["PIPELINE"]

    if not isinstance(result, Pipeline):
        raise ConfigurationError(
            f"Workflow {wf_path.name} must return/define a Pipeline",
            suggestions=[
                "Define workflow() -> Pipeline or PIPELINE = pipeline(...)",
                "Build it with `from ciflow import pipeline, job, sh`",
            ],
        )
    return result


def load_workflow(path: str | Path) -> Pipeline:
    """
    Load a workflow from a .py or .yml/.yaml file.

    Returns:
      Pipeline
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise ConfigurationError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix in YAML_SUFFIXES:
        return load_yaml_workflow(wf_path)
    if wf_path.suffix == ".py":
        return _load_python_workflow(wf_path)
    raise ConfigurationError(
        f"Workflow must be a .py, .yml or .yaml file, got: {wf_path.name}"
    )


def find_workflow_files(root: str | Path = ".") -> List[Path]:
    """
    Find workflow files under `root`:
      ciflow_workflow.py, *_workflow.py, .github/workflows/*.yml
    """
    current_dir = Path(root)
    found: List[Path] = []

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        found.append(default_workflow)

    for path in current_dir.glob("*_workflow.py"):
        if path != default_workflow:
            found.append(path)

    gh_dir = current_dir / ".github" / "workflows"
    for suffix in YAML_SUFFIXES:
        found.extend(gh_dir.glob(f"*{suffix}"))

    return sorted(found)
