"""tar+gzip packaging of a finished output directory."""

import logging
import tarfile
from pathlib import Path

from .errors import ConfigError, OutputIOError

logger = logging.getLogger(__name__)


def create_archive(output_dir: Path, archive_path: Path) -> Path:
    """Pack ``output_dir`` into ``archive_path`` (``w:gz``).

    The directory is stored as a single top-level member named after it.

    Raises:
        ConfigError: ``archive_path`` lies inside ``output_dir``.
        OutputIOError: The archive could not be written.
    """
    output_dir = Path(output_dir).resolve()
    archive_path = Path(archive_path).resolve()
    try:
        archive_path.relative_to(output_dir)
    except ValueError:
        pass
    else:
        raise ConfigError("Archive file must not be inside the output directory.")

    logger.info("Archiving '%s' to '%s'.", output_dir, archive_path)
    try:
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(archive_path, "w:gz") as tar:
            tar.add(str(output_dir), arcname=output_dir.name)
    except (OSError, tarfile.TarError) as exc:
        raise OutputIOError(archive_path, exc) from exc
    return archive_path
