"""
Output management for icons and export archives.

Every session gets its own folder named after the request id:

    outputs/<request id>/icons/flux-gen1-01.png
    outputs/<request id>/exports/icon-pack-<request id>-flux-gen1.zip
"""

from io import BytesIO
from pathlib import Path
from typing import List, Optional, Union
import logging
import re

from PIL import Image, UnidentifiedImageError

from icon_pack.session import Icon, ProviderJob

logger = logging.getLogger(__name__)


class OutputManager:
    """
    Manages the output directory of one generation session.

    Example:
        mgr = OutputManager(base_dir="outputs", session_name="a1b2c3")
        mgr.save_job_icons(job)
        # Writes: outputs/a1b2c3/icons/flux-gen1-01.png ...
    """

    def __init__(
        self,
        base_dir: Union[str, Path] = "outputs",
        session_name: Optional[str] = None,
        image_format: str = "PNG",
    ):
        """
        Initialize output manager.

        Args:
            base_dir: Base output directory (default: "outputs")
            session_name: Folder name for the session, normally the request id
            image_format: Pillow format used for saved icons
        """
        self.base_dir = Path(base_dir)
        self.session_name = session_name or "session"
        self.image_format = image_format

        self.session_dir = self.base_dir / self.safe_name(self.session_name)
        self.icons_dir = self.session_dir / "icons"
        self.exports_dir = self.session_dir / "exports"

    @staticmethod
    def safe_name(name: str) -> str:
        safe = re.sub(r'[^\w.-]', '_', name).strip("._")
        return safe or "session"

    @property
    def extension(self) -> str:
        return "jpg" if self.image_format.upper() == "JPEG" else self.image_format.lower()

    def save_icon(self, icon: Icon, filename: str) -> Path:
        """
        Write one icon under ``icons/``.

        The bytes are re-encoded through Pillow in the configured format. Data
        Pillow cannot read is written unchanged.

        Args:
            icon: Icon to save
            filename: File name without extension

        Returns:
            Path of the written file
        """
        self.icons_dir.mkdir(parents=True, exist_ok=True)
        path = self.icons_dir / f"{filename}.{self.extension}"

        try:
            with Image.open(BytesIO(icon.image_data)) as image:
                if self.image_format.upper() == "JPEG" and image.mode not in ("RGB", "L"):
                    image = image.convert("RGB")
                image.save(path, format=self.image_format)
        except UnidentifiedImageError:
            logger.warning(f"Icon data for {filename} is not a readable image; writing raw bytes")
            path.write_bytes(icon.image_data)

        return path

    def save_job_icons(self, job: ProviderJob) -> List[Path]:
        """Save every icon of a successful job as ``<provider>-gen<N>-<idx>``."""
        return [
            self.save_icon(icon, f"{job.key}-{index:02d}")
            for index, icon in enumerate(job.icons, 1)
        ]

    def save_more_icons(self, provider_id: str, icons: List[Icon]) -> List[Path]:
        """Save generate-more icons, numbering after any already on disk."""
        self.icons_dir.mkdir(parents=True, exist_ok=True)
        existing = len(list(self.icons_dir.glob(f"{provider_id}-more-*")))
        return [
            self.save_icon(icon, f"{provider_id}-more-{existing + index:02d}")
            for index, icon in enumerate(icons, 1)
        ]

    def write_archive(self, filename: str, data: bytes) -> Path:
        """Write an export archive under ``exports/``."""
        self.exports_dir.mkdir(parents=True, exist_ok=True)
        path = self.exports_dir / filename
        path.write_bytes(data)
        return path

    def __str__(self) -> str:
        return str(self.session_dir)

    def __repr__(self) -> str:
        return f"OutputManager(session_dir='{self.session_dir}')"
