import json
import logging
import zipfile
from pathlib import Path
from typing import Dict, Iterable, List

from pydantic import BaseModel, Field

from comic_gen.core.models import PanelResult

logger = logging.getLogger(__name__)

METADATA_FILENAME = "panels.json"

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}


def extension_for(mime_type: str) -> str:
    return EXTENSIONS.get((mime_type or "").lower(), "png")


def panel_filename(index: int, mime_type: str) -> str:
    return f"panel_{index:02d}.{extension_for(mime_type)}"


class ComicBundle(BaseModel):
    """Panel images keyed by entry name, plus metadata covering every requested panel."""

    images: Dict[str, bytes] = Field(default_factory=dict, description="Entry name -> image bytes, in index order")
    metadata: List[dict] = Field(default_factory=list, description="One entry per requested panel, ascending index")

    @property
    def missing_indices(self) -> List[int]:
        present = {int(name[len("panel_"):].split(".")[0]) for name in self.images}
        return [entry["index"] for entry in self.metadata if entry["index"] not in present]

    @property
    def is_partial(self) -> bool:
        return bool(self.missing_indices)

    def metadata_json(self) -> str:
        return json.dumps(self.metadata, ensure_ascii=False, indent=2)

    def write_zip(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for name, data in self.images.items():
                zf.writestr(name, data)
            zf.writestr(METADATA_FILENAME, self.metadata_json())
        logger.info(f"Bundle saved to {path}")
        return path

    def write_to_directory(self, directory: Path) -> Path:
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        for name, data in self.images.items():
            (directory / name).write_bytes(data)
        with open(directory / METADATA_FILENAME, "w", encoding="utf-8") as f:
            f.write(self.metadata_json())
        logger.info(f"Panels saved to {directory}")
        return directory


def assemble_bundle(results: Iterable[PanelResult]) -> ComicBundle:
    """
    Packages panel results into a bundle, ordered by panel index.

    Panels without an image get no image entry but always get a metadata entry,
    so consumers can tell a partial run from a complete one.
    """
    bundle = ComicBundle()
    for result in sorted(results, key=lambda r: r.index):
        if result.image_bytes is not None:
            bundle.images[panel_filename(result.index, result.image_mime_type)] = result.image_bytes
        bundle.metadata.append({
            "index": result.index,
            "title": result.spec.title,
            "caption": result.spec.caption,
            "prompt": result.composed_prompt,
            "references": [ref.to_export() for ref in result.used_references],
        })
    return bundle
