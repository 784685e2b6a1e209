"""Command line for reading a disc with cdrdao.

The image is produced with::

    cdrdao read-cd --read-raw --device DEV --driver DRIVER \\
        --paranoia-mode N --datafile DATA.bin DATA.toc

``--read-raw`` stores data tracks as full 2352-byte sectors so data and
audio tracks share one raw file. ``--paranoia-mode`` controls audio
verification: 3 retries and cross-checks marginal sectors, 0 reads them
once. Data tracks are unaffected by it. The TOC file is cdrdao's own
description of what it wrote and is converted to a CUE sheet afterwards.
"""

from cdmedia.config import CdmediaConfig
from cdmedia.rip.models import RawOutputs, RipConfiguration


def paranoia_mode(config: CdmediaConfig, *, use_error_correction: bool) -> int:
    """Map the error-correction toggle to a cdrdao paranoia level."""
    if use_error_correction:
        return config.paranoia_mode_accurate
    return config.paranoia_mode_fast


def build_read_cd_args(
    config: CdmediaConfig,
    rip_config: RipConfiguration,
    outputs: RawOutputs,
) -> list[str]:
    """Arguments (without the executable) for ripping ``rip_config``."""
    mode = paranoia_mode(config, use_error_correction=rip_config.use_error_correction)
    return [
        "read-cd",
        "--read-raw",
        "--device",
        rip_config.source_device,
        "--driver",
        config.cdrdao_driver,
        "--paranoia-mode",
        str(mode),
        "--datafile",
        str(outputs.data_file),
        str(outputs.toc_file),
    ]
