import json
import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from comic_gen.core.errors import ConfigError
from comic_gen.core.models import CharacterReference

logger = logging.getLogger(__name__)

MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}


def detect_mime_type(path: Path) -> str:
    """Detects the MIME type of an image file with Pillow, defaulting to PNG."""
    try:
        with Image.open(path) as img:
            return Image.MIME.get(img.format, "image/png")
    except (UnidentifiedImageError, OSError) as e:
        raise ConfigError(f"Could not read reference image {path}: {e}") from e


def safe_folder_name(name: str) -> str:
    safe = "".join(x for x in name if x.isalnum() or x in (' ', '_', '-')).strip().replace(' ', '_')
    return safe or "character"


class CharacterStore:
    """
    Named galleries of reference images, kept in insertion order.

    Display names are stored exactly as given. Every lookup compares names
    case-insensitively ("Alice" finds "alice"); names are never normalized on
    write, so exported metadata keeps the user's spelling.
    """

    def __init__(self, catalog_dir: Optional[Path] = None):
        self.catalog_dir = catalog_dir
        self._galleries: Dict[str, Tuple[CharacterReference, ...]] = {}

    @classmethod
    def load(cls, catalog_dir: Path) -> "CharacterStore":
        """Loads a store persisted with save(); a missing catalog gives an empty store."""
        store = cls(catalog_dir)
        catalog_path = catalog_dir / "characters.json"
        if not catalog_path.exists():
            return store

        with open(catalog_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        for item in data:
            name = item["name"]
            for ref in item.get("references", []):
                image_path = catalog_dir / ref["path"]
                if not image_path.exists():
                    logger.warning(f"Reference image {image_path} for {name} is missing. Skipping.")
                    continue
                store.add(name, image_path.read_bytes(), ref.get("mime_type", "image/png"))
        logger.info(f"Loaded {len(store)} characters from catalog.")
        return store

    def save(self):
        """Writes every gallery to catalog_dir as image files plus characters.json."""
        if self.catalog_dir is None:
            raise ConfigError("Character store has no catalog directory to save into.")
        self.catalog_dir.mkdir(parents=True, exist_ok=True)

        catalog_data = []
        used_folders = set()
        for name, refs in self._galleries.items():
            base = safe_folder_name(name)
            folder = base
            n = 2
            # Distinct names may sanitise to the same folder; compare as a case-insensitive FS would
            while folder.casefold() in used_folders:
                folder = f"{base}_{n}"
                n += 1
            used_folders.add(folder.casefold())
            (self.catalog_dir / folder).mkdir(parents=True, exist_ok=True)
            entries = []
            for n, ref in enumerate(refs, start=1):
                ext = MIME_EXTENSIONS.get(ref.mime_type, "png")
                rel_path = f"{folder}/ref_{n:02d}.{ext}"
                (self.catalog_dir / rel_path).write_bytes(ref.image_bytes)
                entries.append({"path": rel_path, "mime_type": ref.mime_type})
            catalog_data.append({"name": name, "references": entries})

        with open(self.catalog_dir / "characters.json", "w", encoding="utf-8") as f:
            json.dump(catalog_data, f, ensure_ascii=False, indent=4)

    def add(self, name: str, image_bytes: bytes, mime_type: str = "image/png") -> CharacterReference:
        name = (name or "").strip()
        if not name:
            raise ConfigError("Character name must not be empty.")
        if not image_bytes:
            raise ConfigError(f"Reference image for {name} is empty.")

        key = self._key_for(name) or name
        ref = CharacterReference(name=key, image_bytes=image_bytes, mime_type=mime_type or "image/png")
        self._galleries[key] = self._galleries.get(key, ()) + (ref,)
        return ref

    def add_file(self, name: str, path: Path) -> CharacterReference:
        path = Path(path)
        mime_type = detect_mime_type(path)
        logger.info(f"Adding reference image {path.name} ({mime_type}) for {name}")
        return self.add(name, path.read_bytes(), mime_type)

    def remove(self, name: str) -> bool:
        key = self._key_for(name)
        if key is None:
            return False
        del self._galleries[key]
        return True

    def names(self) -> List[str]:
        return list(self._galleries)

    def find(self, name: str) -> Tuple[CharacterReference, ...]:
        key = self._key_for(name)
        return self._galleries[key] if key is not None else ()

    def all_references(self) -> List[CharacterReference]:
        return [ref for refs in self._galleries.values() for ref in refs]

    def items(self) -> Iterator[Tuple[str, Tuple[CharacterReference, ...]]]:
        return iter(self._galleries.items())

    def _key_for(self, name: str) -> Optional[str]:
        wanted = (name or "").strip().casefold()
        for key in self._galleries:
            if key.casefold() == wanted:
                return key
        return None

    def __contains__(self, name: str) -> bool:
        return self._key_for(name) is not None

    def __len__(self) -> int:
        return len(self._galleries)
