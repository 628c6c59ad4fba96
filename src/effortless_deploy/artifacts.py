"""Deployable code artifacts.

Bundling is done elsewhere; this module only wraps an already-built zip or
zips an already-built directory. Directory zips are deterministic (sorted
entries, fixed timestamps and permissions) so zipping identical content twice
yields the same bytes and the same content hash, which is what function
reconciliation compares against the remote ``CodeSha256``.
"""

import base64
import hashlib
import io
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

# 1980-01-01, the earliest timestamp the zip format can store
_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_FILE_MODE = 0o644 << 16


@dataclass(frozen=True)
class CodeArtifact:
    """
    Zip bytes of a function or layer package.

    Attributes:
        content: Zip file contents
        source: Where the artifact came from, for messages
    """

    content: bytes = field(repr=False)
    source: str = "<memory>"

    @property
    def sha256(self) -> str:
        """Base64 SHA-256 digest, the format Lambda reports as ``CodeSha256``."""
        return base64.b64encode(hashlib.sha256(self.content).digest()).decode("ascii")

    @property
    def hex_digest(self) -> str:
        return hashlib.sha256(self.content).hexdigest()

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_file(cls, path: str | Path) -> "CodeArtifact":
        """Load a prebuilt zip file."""
        path = Path(path)
        return cls(content=path.read_bytes(), source=str(path))

    @classmethod
    def from_directory(cls, directory: str | Path, prefix: str = "") -> "CodeArtifact":
        """
        Zip a directory deterministically.

        Args:
            directory: Directory whose files become the zip root
            prefix: Optional path prefix inside the zip (e.g. ``python`` for layers)

        Returns:
            CodeArtifact with the zipped bytes
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise FileNotFoundError(f"Artifact directory not found: {directory}")

        zip_buffer = io.BytesIO()
        with zipfile.ZipFile(zip_buffer, "w", zipfile.ZIP_DEFLATED) as zf:
            files = sorted(p for p in directory.rglob("*") if p.is_file())
            for file_path in files:
                arcname = file_path.relative_to(directory).as_posix()
                if prefix:
                    arcname = f"{prefix.strip('/')}/{arcname}"
                info = zipfile.ZipInfo(arcname, date_time=_FIXED_DATE_TIME)
                info.external_attr = _FILE_MODE
                info.compress_type = zipfile.ZIP_DEFLATED
                zf.writestr(info, file_path.read_bytes())

        return cls(content=zip_buffer.getvalue(), source=str(directory))
