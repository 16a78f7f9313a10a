"""Loading finders and runners from import references.

Job files and the CLI refer to finder and runner classes as ``module:Class``:

- Installed modules: "crawlkit.finders:GenericAnchorsFinder"
- Local files: "runners/title.py:TitleRunner" (relative to the job file)
"""

import importlib
import importlib.util
import sys
from pathlib import Path
from typing import Any

from crawlkit.config import JobConfig, RunnableSpec
from crawlkit.exceptions import ConfigError


def _load_module_from_file(file_path: Path) -> Any:
    """Load a module from a Python file path.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ImportError: If the module cannot be imported
    """
    path = file_path.resolve()
    if not path.exists():
        raise FileNotFoundError(f"Module file not found: {file_path}")

    if not path.is_file():
        raise ValueError(f"Module path is not a file: {file_path}")

    module_name = f"crawlkit_user_{path.stem}"

    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load module from {file_path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)

    return module


def load_object(reference: str, base_dir: Path | None = None) -> Any:
    """Resolve a ``module:attribute`` reference.

    Args:
        reference: "package.module:Name" or "path/to/file.py:Name"
        base_dir: Directory relative file paths are resolved against

    Raises:
        ConfigError: If the module or attribute cannot be loaded
    """
    module_ref, sep, attr = reference.rpartition(":")
    if not sep or not module_ref or not attr:
        raise ConfigError(f"Invalid reference {reference!r}, expected 'module:Name'")

    try:
        if module_ref.endswith(".py"):
            path = Path(module_ref)
            if not path.is_absolute() and base_dir is not None:
                path = base_dir / path
            module = _load_module_from_file(path)
        else:
            module = importlib.import_module(module_ref)
    except Exception as e:
        raise ConfigError(f"Cannot import {module_ref}: {type(e).__name__}: {e}") from e

    try:
        return getattr(module, attr)
    except AttributeError:
        raise ConfigError(f"Module {module_ref} has no attribute {attr!r}") from None


def build_runnable(spec: RunnableSpec, base_dir: Path | None = None) -> Any:
    """Instantiate the finder/runner class a RunnableSpec refers to.

    ``options`` become constructor keyword arguments; a ``timeout`` in the
    RunnableSpec overrides whatever the instance declares.
    """
    factory = load_object(spec.object, base_dir)
    if not callable(factory):
        raise ConfigError(f"{spec.object} is not a class or factory")
    try:
        instance = factory(**spec.options)
    except Exception as e:
        raise ConfigError(f"Cannot create {spec.object}: {type(e).__name__}: {e}") from e
    if spec.timeout is not None:
        instance.timeout = spec.timeout
    return instance


def apply_job(crawler: Any, job: JobConfig, base_dir: Path | None = None) -> None:
    """Register a job's finder and runners on a CrawlKit instance.

    Raises:
        ConfigError: If a finder or runner cannot be loaded or registered
    """
    try:
        if job.finder is not None:
            crawler.set_finder(build_runnable(job.finder, base_dir), *job.finder.parameters)
        for key, spec in job.runners.items():
            crawler.add_runner(key, build_runnable(spec, base_dir), *spec.parameters)
    except ValueError as e:
        raise ConfigError(str(e)) from e
