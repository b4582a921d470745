"""
Converter backends - the external programs that turn a source document into
the target format. Every backend exposes convert(source, target) and raises
ConversionError when the conversion fails.
"""
import logging
import os
import shutil
import subprocess
import tempfile
import threading
from pathlib import Path

logger = logging.getLogger(__name__)


class ConversionError(Exception):
    """Raised when a converter fails to produce the target file"""


class LibreOfficeConverter:
    """
    Headless LibreOffice (soffice) converter.

    Concurrent soffice invocations sharing one user profile block each other,
    so every worker thread gets its own profile directory under profile_root.
    """

    def __init__(self, soffice="soffice", profile_root=None):
        """
        Args:
            soffice: Name or path of the soffice executable
            profile_root: Directory holding per-thread user profiles
                          (defaults to a '.profiles' directory next to the source)
        """
        self.soffice = soffice
        self.profile_root = Path(profile_root) if profile_root else None

    def _profile_dir(self, source):
        root = self.profile_root or source.parent / ".profiles"
        return root / f"profile-{threading.get_ident()}"

    def build_command(self, source, target_extension, outdir):
        profile = self._profile_dir(source).absolute()
        return [
            self.soffice,
            "--headless",
            "--nologo",
            "--nolockcheck",
            "--nodefault",
            "--norestore",
            f"-env:UserInstallation={profile.as_uri()}",
            "--convert-to",
            target_extension,
            "--outdir",
            str(outdir),
            str(source),
        ]

    def convert(self, source, target):
        """
        Convert source into target.

        The target format is taken from the target's extension.

        Returns:
            Path of the written target
        """
        source = Path(source)
        target = Path(target)
        target_extension = target.suffix.lstrip(".")
        if not target_extension:
            raise ConversionError(f"Target {target} has no extension")

        with tempfile.TemporaryDirectory(prefix="soffice-out-", dir=source.parent) as outdir:
            cmd = self.build_command(source, target_extension, outdir)
            logger.debug(f"stage=conversion event=soffice_started cmd={' '.join(cmd)}")
            try:
                process = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, check=False)
            except OSError as e:
                raise ConversionError(f"Could not run {self.soffice}: {e}") from e

            if process.returncode != 0:
                raise ConversionError(
                    f"{self.soffice} exited with code {process.returncode}: {process.stderr.strip()}"
                )

            produced = Path(outdir) / f"{source.stem}.{target_extension}"
            if not produced.exists():
                raise ConversionError(f"{self.soffice} did not produce {produced.name}: {process.stdout.strip()}")

            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(produced), str(target))

        return target


def build_converter(name, **options):
    """
    Create the converter backend selected by name.

    Args:
        name: 'libreoffice' or 'docling'
        options: Keyword arguments passed to the backend
    """
    name = (name or "").lower()
    if name == "libreoffice":
        return LibreOfficeConverter(**options)
    if name == "docling":
        # docling is an optional, heavyweight extra
        from document_conversion_platform.ingest_tools.docling_converter import DoclingConverter
        return DoclingConverter(**options)
    raise ValueError(f"Unknown converter backend: {name}")


def soffice_available(soffice="soffice"):
    """True if the soffice executable can be found"""
    return shutil.which(soffice) is not None or os.path.isfile(soffice)
