"""
ZIP bundles for downloads.

Every archive carries a JSON manifest describing all items, whether or not
their binary asset could be fetched. Assets are fetched one at a time; a
failed fetch is logged and skipped, never fatal, except for sound bundles
where zero fetched audio files makes the whole archive pointless.
"""
import io
import json
import logging
import re
import zipfile
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import httpx
from PIL import Image, UnidentifiedImageError

from .errors import ArchiveEmptyError, AssetFetchError
from .normalize import SOUND_TYPES, Character, SoundAsset, StoryboardShot

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def safe_filename(name: str) -> str:
    cleaned = _NON_ALNUM.sub("_", (name or "").lower())
    return cleaned if cleaned.strip("_") else "untitled"


def _export_date() -> str:
    return datetime.now(timezone.utc).isoformat()


def ensure_png(data: bytes, label: str) -> bytes:
    """Re-encode WebP (or any non-PNG) images so the .png extension is honest."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            if img.format == "PNG":
                return data
            if img.mode in ("RGBA", "LA", "P"):
                img = img.convert("RGBA")
            elif img.mode != "RGB":
                img = img.convert("RGB")
            out = io.BytesIO()
            img.save(out, format="PNG")
            logger.info(f"Converted image for {label} to PNG")
            return out.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Image conversion failed for {label}: {e}, saving as-is")
        return data


async def fetch_asset(client: httpx.AsyncClient, url: str, label: str) -> bytes:
    try:
        resp = await client.get(url)
    except httpx.HTTPError as e:
        raise AssetFetchError(f"Error downloading {label}: {e}") from e
    if resp.status_code >= 400:
        raise AssetFetchError(f"Failed to download {label}: HTTP {resp.status_code}")
    return resp.content


class ArchiveBuilder:
    def __init__(self, client: httpx.AsyncClient):
        self.client = client
        self._buffer = io.BytesIO()
        self._zip = zipfile.ZipFile(self._buffer, "w", zipfile.ZIP_DEFLATED)
        self.names = set()
        self.assets_added = 0

    def _unique(self, path: str) -> str:
        if path not in self.names:
            return path
        stem, dot, ext = path.rpartition(".")
        n = 2
        while f"{stem}_{n}{dot}{ext}" in self.names:
            n += 1
        return f"{stem}_{n}{dot}{ext}"

    def add_text(self, path: str, text: str):
        self._zip.writestr(path, text)
        self.names.add(path)

    def add_json(self, path: str, data):
        self.add_text(path, json.dumps(data, indent=2, ensure_ascii=False))

    async def add_asset(self, path: str, url: str, label: str, as_png: bool = False,
                        dedupe: bool = True) -> bool:
        """Fetch url into path. Returns False (and logs) on any fetch failure."""
        if not url:
            return False
        if not dedupe and path in self.names:
            return True
        try:
            data = await fetch_asset(self.client, url, label)
        except AssetFetchError as e:
            logger.warning(f"{e}")
            return False
        if as_png:
            data = ensure_png(data, label)
        path = self._unique(path) if dedupe else path
        self._zip.writestr(path, data)
        self.names.add(path)
        self.assets_added += 1
        logger.info(f"Added {path} for {label}")
        return True

    def finish(self) -> bytes:
        self._zip.close()
        return self._buffer.getvalue()


def character_manifest(characters: List[Character]) -> dict:
    return {
        "exportDate": _export_date(),
        "totalCharacters": len(characters),
        "characters": [
            {
                "name": c.name,
                "role": c.role,
                "description": c.description,
                "traits": c.traits,
                "skinColor": c.skin_color,
                "hairColor": c.hair_color,
                "clothingColor": c.clothing_color,
                "mood": c.mood,
                "visualDescription": c.visual_description,
            }
            for c in characters
        ],
    }


async def build_character_archive(characters: List[Character], client: httpx.AsyncClient) -> bytes:
    builder = ArchiveBuilder(client)
    builder.add_json("characters.json", character_manifest(characters))
    for c in characters:
        await builder.add_asset(
            f"character_images/{safe_filename(c.name)}_portrait.png", c.image_url, c.name, as_png=True
        )
    # A metadata-only character pack is still useful.
    logger.info(f"Character archive: {builder.assets_added}/{len(characters)} portraits")
    return builder.finish()


def sound_manifest(assets: List[SoundAsset]) -> dict:
    return {
        "exportDate": _export_date(),
        "totalAssets": len(assets),
        "breakdown": {kind: sum(1 for a in assets if a.type == kind) for kind in SOUND_TYPES},
        "assets": [
            {
                "name": a.name,
                "type": a.type,
                "duration": a.duration,
                "description": a.description,
                "scenes": a.scenes,
            }
            for a in assets
        ],
    }


def audio_extension(url: str) -> str:
    return "wav" if ".wav" in url.lower() else "mp3"


async def build_sound_archive(assets: List[SoundAsset], client: httpx.AsyncClient) -> bytes:
    builder = ArchiveBuilder(client)
    builder.add_json("sound_design.json", sound_manifest(assets))
    for i, asset in enumerate(assets, start=1):
        path = f"audio_files/{i}_{safe_filename(asset.name)}.{audio_extension(asset.audio_url)}"
        await builder.add_asset(path, asset.audio_url, asset.name)
    if builder.assets_added == 0:
        raise ArchiveEmptyError("No audio files could be downloaded. Assets may not be generated yet.")
    logger.info(f"Sound archive: {builder.assets_added}/{len(assets)} audio files")
    return builder.finish()


def _shot_id(label: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", label)


def storyboard_manifest(frames: List[StoryboardShot]) -> dict:
    return {
        "exportDate": _export_date(),
        "totalFrames": len(frames),
        "totalCoverageShots": sum(len(f.coverage_shots) for f in frames),
        "frames": [
            {
                **f.dump(),
                "shotNumber": f.shot_number or str(i),
                "coverageShots": [
                    {
                        "shotNumber": s.shot_number,
                        "description": s.description,
                        "cameraAngle": s.camera_angle,
                        "lens": s.lens,
                    }
                    for s in f.coverage_shots
                ],
            }
            for i, f in enumerate(frames, start=1)
        ],
    }


async def _add_storyboard_images(builder: ArchiveBuilder, frames: List[StoryboardShot], folder: str):
    for i, frame in enumerate(frames, start=1):
        shot_id = _shot_id(frame.shot_number or str(i))
        await builder.add_asset(f"{folder}/frame_{shot_id}_main.png", frame.image_url, f"frame {shot_id}")
        for j, shot in enumerate(frame.coverage_shots):
            cov_id = _shot_id(shot.shot_number or f"{i}-{j}")
            await builder.add_asset(f"{folder}/frame_{cov_id}.png", shot.image_url, f"coverage shot {cov_id}")


async def build_storyboard_archive(frames: List[StoryboardShot], client: httpx.AsyncClient) -> bytes:
    builder = ArchiveBuilder(client)
    builder.add_json("storyboard.json", storyboard_manifest(frames))
    await _add_storyboard_images(builder, frames, "storyboard_images")
    logger.info(f"Storyboard archive: {builder.assets_added} images for {len(frames)} frames")
    return builder.finish()


def _records(package: Dict, key: str) -> List[dict]:
    value = package.get(key)
    return [v for v in value if isinstance(v, dict)] if isinstance(value, list) else []


async def _add_export_images(builder: ArchiveBuilder, package: Dict, kinds: Iterable[str]):
    if "characters" in kinds:
        for c in (Character.model_validate(r) for r in _records(package, "characters")):
            await builder.add_asset(
                f"images/character_{safe_filename(c.name)}.png", c.image_url, c.name,
                as_png=True, dedupe=False,
            )
    if "storyboard" in kinds:
        frames = [StoryboardShot.model_validate(r) for r in _records(package, "storyboard")]
        for i, frame in enumerate(frames, start=1):
            await builder.add_asset(
                f"images/storyboard_frame_{i}.png", frame.image_url, f"frame {i}", dedupe=False
            )
            for j, shot in enumerate(frame.coverage_shots, start=1):
                await builder.add_asset(
                    f"images/storyboard_frame_{i}_shot_{j}.png", shot.image_url,
                    f"frame {i} shot {j}", dedupe=False,
                )


async def build_export_archive(options: List[str], package: Dict, client: httpx.AsyncClient,
                               title: Optional[str] = None) -> bytes:
    builder = ArchiveBuilder(client)
    sections = ["=========================", title or "FILM SUITE EXPORT", "=========================", ""]

    for option in dict.fromkeys(options):
        if option == "script":
            script = package.get("script") or "No script available"
            builder.add_text("script.txt", script)
            sections.append(f"Script:\n{script}\n")
        elif option == "complete":
            builder.add_json("complete_package.json", package)
            sections.append(f"Complete Package:\n{json.dumps(package, indent=2)}\n")
            await _add_export_images(builder, package, ("characters", "storyboard"))
        else:
            data = package.get(option) or []
            builder.add_json(f"{option}.json", data)
            sections.append(f"{option.capitalize()}:\n{json.dumps(data, indent=2)}\n")
            if option in ("characters", "storyboard"):
                await _add_export_images(builder, package, (option,))

    sections.append(f"Generated on: {_export_date()}")
    sections.append("Ready for production planning and collaboration.")
    builder.add_text("export_summary.txt", "\n".join(sections))
    logger.info(f"Export archive: options={list(options)} images={builder.assets_added}")
    return builder.finish()


ARCHIVE_KINDS = {
    "characters": (Character, build_character_archive),
    "sound": (SoundAsset, build_sound_archive),
    "storyboard": (StoryboardShot, build_storyboard_archive),
}


async def build_archive(kind: str, items: List[dict], client: httpx.AsyncClient) -> bytes:
    """Validate raw item dicts for one archive kind and assemble its ZIP."""
    model, builder = ARCHIVE_KINDS[kind]
    return await builder([model.model_validate(item) for item in items], client)
