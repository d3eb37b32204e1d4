from abc import ABC, abstractmethod
from pathlib import Path

from common.config import STORAGE_DIR


class ArtifactStore(ABC):
    @abstractmethod
    def save(self, job_id: str, image: bytes) -> str:
        """Store the image durably and return its location as a URI."""


class FilesystemArtifactStore(ArtifactStore):
    def __init__(self, path: str = STORAGE_DIR) -> None:
        self._base_save_directory = Path(path)
        self._base_save_directory.mkdir(parents=True, exist_ok=True)

    def save(self, job_id: str, image: bytes) -> str:
        if not image:
            raise ValueError(f"Job {job_id}: empty image")

        scr_path = self._build_path(job_id)
        self._write_file(scr_path, image, job_id)

        return scr_path.resolve().as_uri()

    def _build_path(self, job_id: str) -> Path:
        return self._base_save_directory / f"{Path(job_id).name}.png"

    @staticmethod
    def _write_file(scr_path: Path, scr_bytes: bytes, job_id: str) -> None:
        # Write then rename, so a reader never sees a partial file.
        tmp_path = scr_path.with_suffix(".tmp")
        try:
            tmp_path.write_bytes(scr_bytes)
            tmp_path.replace(scr_path)

        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise OSError(
                f"Job {job_id}: error write file {scr_path}: {e}"
            ) from e
