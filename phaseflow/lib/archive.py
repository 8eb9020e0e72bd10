"""
Moving feature directories between todo/, done/ and removed/.
"""

import logging
import re
import shutil
from pathlib import Path

from phaseflow.lib import constants
from phaseflow.lib.config import Project
from phaseflow.lib.models import utc_now

logger = logging.getLogger(__name__)

TITLE_PATTERN = re.compile(r'^#\s+(.+)', re.MULTILINE)


def _count_files(directory: Path) -> int:
    return sum(1 for p in directory.rglob("*") if p.is_file())


def _merge_tree(source: Path, target: Path) -> None:
    """Copy source into target without overwriting files already there."""
    for path in sorted(source.rglob("*")):
        dest = target / path.relative_to(source)
        if path.is_dir():
            dest.mkdir(parents=True, exist_ok=True)
        elif not dest.exists():
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, dest)


def archive_feature(project: Project, feature_id: str) -> Path:
    """Move todo/<id> to done/<id>. Returns the archive path.

    attachments/ is dropped first. If done/<id> already exists (a summary
    written ahead of time, say) the source is merged in without overwriting.
    A minimal summary.md is written if none is present.

    Raises:
        FileNotFoundError: If the feature has no active directory
    """
    source = project.todo_path(feature_id)
    target = project.done_path(feature_id)

    if not source.is_dir():
        raise FileNotFoundError(f"Feature directory not found: {source}")

    attachments = source / constants.ATTACHMENTS_DIR
    if attachments.exists():
        file_count = _count_files(attachments)
        if file_count > 0:
            logger.warning(f"Deleting attachments folder ({file_count} files)")
        shutil.rmtree(attachments)

    target.parent.mkdir(parents=True, exist_ok=True)
    if target.exists():
        _merge_tree(source, target)
        shutil.rmtree(source)
    else:
        shutil.move(str(source), str(target))

    summary_path = target / constants.SUMMARY_MD
    if not summary_path.exists():
        summary_path.write_text(generate_minimal_summary(target, feature_id))

    logger.info(f"Archived {feature_id} to {target}")
    return target


def _read_title(feature_dir: Path) -> str | None:
    for rel in (constants.SPEC_MD, constants.INITIALIZATION_MD):
        path = feature_dir / rel
        if path.exists():
            match = TITLE_PATTERN.search(path.read_text())
            if match:
                return match.group(1).strip()
            return None
    return None


def generate_minimal_summary(feature_dir: Path, feature_id: str) -> str:
    """Summary for features archived without a hand-written one."""
    title = _read_title(feature_dir) or feature_id
    return f"""# Feature Complete: {title}

## Summary
Feature completed and archived.

## Feature ID
{feature_id}

## Completed
{utc_now()}

## Notes
This is a minimal summary generated at archive time.
"""


def move_to_removed(project: Project, feature_id: str) -> Path:
    """Move todo/<id> to removed/<id>, keeping every file.

    Raises:
        FileNotFoundError: If the feature has no active directory
        FileExistsError: If removed/<id> already exists
    """
    source = project.todo_path(feature_id)
    target = project.removed_path(feature_id)

    if not source.is_dir():
        raise FileNotFoundError(f"Feature directory not found: {source}")
    if target.exists():
        raise FileExistsError(f"Target already exists: {target}")

    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(source), str(target))
    logger.info(f"Moved {feature_id} to {target}")
    return target
