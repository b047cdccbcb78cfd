"""Load migration steps from a directory of Python files."""

import importlib.util
import logging
import sys
from pathlib import Path

from s3evolve.core.exceptions import RegistryConfigurationError
from s3evolve.migrations.base import MigrationStep
from s3evolve.migrations.registry import MigrationRegistry

logger = logging.getLogger(__name__)


def load_steps(steps_dir: Path | str) -> list[MigrationStep]:
    """Collect module-level MigrationStep objects from ``*.py`` files.

    Files whose name starts with an underscore are ignored. A file that
    fails to import is a configuration error: a registry missing a step
    would silently skip it on every read.

    Args:
        steps_dir: Directory containing step modules

    Returns:
        The steps found, in file order

    Raises:
        RegistryConfigurationError: If the directory is missing or a file
            cannot be imported
    """
    directory = Path(steps_dir)
    if not directory.is_dir():
        raise RegistryConfigurationError(
            f"Migration steps directory '{directory}' does not exist"
        )

    steps: list[MigrationStep] = []
    for file_path in sorted(directory.glob("*.py")):
        if file_path.name.startswith("_"):
            continue

        module_name = f"s3evolve_step_{file_path.stem}"
        spec = importlib.util.spec_from_file_location(module_name, file_path)
        if not spec or not spec.loader:
            raise RegistryConfigurationError(f"Cannot load step file {file_path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            raise RegistryConfigurationError(
                f"Failed to import step file {file_path}: {e}"
            ) from e

        found = [
            attr
            for attr in vars(module).values()
            if isinstance(attr, MigrationStep)
        ]
        if not found:
            logger.warning(f"No migration steps found in {file_path}")
        steps.extend(found)

    return steps


def load_registry(
    steps_dir: Path | str,
    target_version: int | None = None,
    minimum_version: int = 0,
) -> MigrationRegistry:
    """Build a registry from a directory of step files."""
    steps = load_steps(steps_dir)
    logger.info(f"Loaded {len(steps)} migration step(s) from {steps_dir}")
    return MigrationRegistry(
        steps, target_version=target_version, minimum_version=minimum_version
    )
