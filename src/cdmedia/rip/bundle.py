"""Assembly of ripped output into a published bundle directory."""

import errno
import logging
import os
import re
import shutil
import tempfile
from pathlib import Path

from cdmedia.config import CdmediaConfig
from cdmedia.error_handling import AssemblyError, AssemblyFailure
from cdmedia.rip.layout import DiscLayout, LayoutError, read_toc, render_cue
from cdmedia.rip.models import Bundle, RawOutputs

logger = logging.getLogger(__name__)

CUE_FILE_PATTERN = re.compile(r'^\s*FILE\s+"(?P<name>[^"]+)"', re.MULTILINE)


def bundle_path_for(directory: Path, volume_label: str | None, extension: str = ".cdmedia") -> Path:
    """Build a bundle path from a disc's volume label."""
    safe_name = re.sub(r"[^\w\s.-]", "", volume_label or "").strip(" .")
    safe_name = re.sub(r"\s+", " ", safe_name)
    if not safe_name:
        safe_name = "Untitled Disc"
    return directory / f"{safe_name}{extension}"


class BundleAssembler:
    """Stages, verifies and publishes bundles.

    Everything the reader writes goes into a hidden staging directory next
    to the destination. A bundle only appears at its destination through a
    single rename once it has been verified, so it is either absent or
    complete.
    """

    def __init__(self, config: CdmediaConfig):
        self.config = config

    def create_staging(self, destination: Path) -> RawOutputs:
        """Create the private staging area for a rip into ``destination``."""
        try:
            staging_dir = Path(
                tempfile.mkdtemp(
                    prefix=f".{destination.name}.",
                    suffix=".partial",
                    dir=destination.parent,
                )
            )
        except OSError as e:
            msg = f"Cannot create staging area next to {destination}: {e}"
            raise AssemblyError(msg, AssemblyFailure.IO_ERROR, original_error=e) from e

        logger.debug(f"Staging rip output in {staging_dir}")
        return RawOutputs(
            staging_dir=staging_dir,
            data_file=staging_dir / self.config.data_file_name,
            toc_file=staging_dir / self.config.toc_file_name,
        )

    def finalize(self, outputs: RawOutputs, destination: Path) -> Bundle:
        """Turn the reader's output into a bundle published at ``destination``."""
        layout = self._read_layout(outputs)

        if not outputs.data_file.is_file():
            msg = f"Reader produced no data file at {outputs.data_file}"
            raise AssemblyError(msg, AssemblyFailure.INVALID_LAYOUT)

        try:
            cue_text = render_cue(layout, self.config.data_file_name)
        except LayoutError as e:
            raise AssemblyError(str(e), AssemblyFailure.INVALID_LAYOUT, original_error=e) from e

        bundle_dir = outputs.staging_dir / destination.name
        data_file = bundle_dir / self.config.data_file_name
        cue_sheet = bundle_dir / self.config.cue_file_name
        try:
            bundle_dir.mkdir()
            os.replace(outputs.data_file, data_file)
            cue_sheet.write_text(cue_text, encoding="utf-8")
        except OSError as e:
            msg = f"Could not build bundle in {bundle_dir}: {e}"
            raise AssemblyError(msg, AssemblyFailure.IO_ERROR, original_error=e) from e

        size = self.verify(bundle_dir, expected_size=layout.expected_size)
        self._publish(bundle_dir, destination)
        self._remove_staging(outputs.staging_dir)

        bundle = Bundle(
            path=destination,
            data_file=destination / self.config.data_file_name,
            cue_sheet=destination / self.config.cue_file_name,
            track_count=len(layout.tracks),
            size=size,
        )
        logger.info(f"Published bundle {bundle}")
        return bundle

    def verify(self, bundle_dir: Path, expected_size: int | None = None) -> int:
        """Check a bundle's internal consistency and return its data size.

        The sheet must exist and reference exactly the bundle's data file by
        relative name, and the data file must be non-empty (and exactly
        ``expected_size`` bytes when given).
        """
        data_file = bundle_dir / self.config.data_file_name
        cue_sheet = bundle_dir / self.config.cue_file_name

        try:
            size = data_file.stat().st_size
            cue_text = cue_sheet.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            msg = f"Bundle is missing {Path(e.filename).name}"
            raise AssemblyError(msg, AssemblyFailure.INVALID_LAYOUT, original_error=e) from e
        except OSError as e:
            msg = f"Could not inspect bundle {bundle_dir}: {e}"
            raise AssemblyError(msg, AssemblyFailure.IO_ERROR, original_error=e) from e

        if size == 0:
            msg = f"Data file {data_file.name} is empty"
            raise AssemblyError(msg, AssemblyFailure.SIZE_MISMATCH)
        if expected_size is not None and size != expected_size:
            msg = f"Data file is {size} bytes but the track layout needs {expected_size}"
            raise AssemblyError(msg, AssemblyFailure.SIZE_MISMATCH)

        referenced = CUE_FILE_PATTERN.findall(cue_text)
        if referenced != [data_file.name]:
            msg = f"{cue_sheet.name} references {referenced or 'no files'} instead of {data_file.name}"
            raise AssemblyError(msg, AssemblyFailure.INVALID_LAYOUT)

        return size

    def discard(self, outputs: RawOutputs) -> list[Path]:
        """Remove all partial output. Never raises.

        Returns the paths that could not be removed.
        """
        staging_dir = outputs.staging_dir
        if not staging_dir.exists():
            return []

        leftovers: list[Path] = []

        def record_failure(function, path, exc):
            logger.warning(f"Could not remove {path}: {exc}")
            leftovers.append(Path(path))

        shutil.rmtree(staging_dir, onexc=record_failure)
        if staging_dir.exists() and staging_dir not in leftovers:
            leftovers.append(staging_dir)
        if leftovers:
            logger.warning(f"Partial import output left behind in {staging_dir}")
        else:
            logger.debug(f"Discarded {staging_dir}")
        return leftovers

    def _read_layout(self, outputs: RawOutputs) -> DiscLayout:
        try:
            layout = read_toc(outputs.toc_file)
        except LayoutError as e:
            raise AssemblyError(str(e), AssemblyFailure.INVALID_LAYOUT, original_error=e) from e

        names = layout.file_names
        if names and names != {outputs.data_file.name}:
            msg = f"TOC refers to {sorted(names)} instead of {outputs.data_file.name}"
            raise AssemblyError(msg, AssemblyFailure.INVALID_LAYOUT)
        return layout

    def _publish(self, bundle_dir: Path, destination: Path) -> None:
        if destination.exists() or destination.is_symlink():
            msg = f"{destination} already exists"
            raise AssemblyError(msg, AssemblyFailure.DESTINATION_CONFLICT)
        try:
            os.rename(bundle_dir, destination)
        except OSError as e:
            if e.errno in (errno.EEXIST, errno.ENOTEMPTY):
                msg = f"{destination} already exists"
                raise AssemblyError(
                    msg, AssemblyFailure.DESTINATION_CONFLICT, original_error=e
                ) from e
            msg = f"Could not publish bundle to {destination}: {e}"
            raise AssemblyError(msg, AssemblyFailure.IO_ERROR, original_error=e) from e

    def _remove_staging(self, staging_dir: Path) -> None:
        # The bundle is already published; leftovers here are only logged
        try:
            shutil.rmtree(staging_dir)
        except OSError as e:
            logger.warning(f"Could not remove staging directory {staging_dir}: {e}")
