"""
Save file codec.

A capsule file holds a SaveFileWrapper: the SaveData envelope as JSON text
plus an integrity token computed over that text. The wrapper JSON is
written through the configured text encoding.

Reading never raises for bad data: a file that fails to decode, fails
schema validation or carries a token that does not match its text is
logged and read as an empty SaveData, so the capsule starts over.

Usage:
    write_save_file(path, save_data, EncodingType.BASE64)
    save_data = read_save_file(path, "Player", EncodingType.BASE64)
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import os
from enum import Enum, auto
from functools import lru_cache
from pathlib import Path
from typing import Any

import jsonschema

from saveload.core.save_data import SaveData, SaveFileWrapper

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent.parent / "schemas"
SAVE_FILE_SCHEMA = "save_file.schema.json"
SAVE_DATA_SCHEMA = "save_data.schema.json"


class EncodingType(Enum):
    """How the wrapper text is written to disk."""
    NONE = auto()
    BASE64 = auto()


@lru_cache(maxsize=None)
def load_schema(schema_name: str) -> dict[str, Any]:
    """Load a bundled JSON schema."""
    with open(SCHEMA_DIR / schema_name, 'r', encoding='utf-8') as f:
        return json.load(f)


def encode_text(text: str, encoding: EncodingType) -> str:
    if encoding is EncodingType.NONE:
        return text
    if encoding is EncodingType.BASE64:
        return base64.b64encode(text.encode('utf-8')).decode('ascii')
    raise ValueError(f"Encoding type {encoding} not supported")


def decode_text(text: str, encoding: EncodingType) -> str:
    """
    Reverse encode_text.

    Raises:
        ValueError: If the text is not valid for the encoding
    """
    if encoding is EncodingType.NONE:
        return text
    if encoding is EncodingType.BASE64:
        return base64.b64decode(text.strip(), validate=True).decode('utf-8')
    raise ValueError(f"Encoding type {encoding} not supported")


def compute_password(file_text: str, encoding: EncodingType) -> str:
    """Integrity token over the envelope text (tamper detection, not secrecy)."""
    payload = encode_text(file_text, encoding).encode('utf-8') + file_text.encode('utf-8')
    digest = hashlib.sha256(payload).hexdigest().upper()
    return encode_text(digest, encoding)


def validate_password(password: str, file_text: str, encoding: EncodingType) -> bool:
    return password == compute_password(file_text, encoding)


def serialize_save_data(save_data: SaveData, encoding: EncodingType) -> str:
    """Build the full file text for a SaveData."""
    safe_file_text = save_data.model_dump_json(by_alias=True)
    wrapper = SaveFileWrapper(
        save_file_password=compute_password(safe_file_text, encoding),
        safe_file_text=safe_file_text,
    )
    return encode_text(wrapper.model_dump_json(by_alias=True), encoding)


def parse_save_data(text: str, encoding: EncodingType) -> SaveData:
    """
    Parse and verify full file text.

    Raises:
        ValueError: If the text cannot be decoded or parsed, or its token does not match
        jsonschema.ValidationError: If the wrapper or envelope has the wrong shape
    """
    raw_wrapper = json.loads(decode_text(text, encoding))
    jsonschema.validate(instance=raw_wrapper, schema=load_schema(SAVE_FILE_SCHEMA))
    wrapper = SaveFileWrapper.model_validate(raw_wrapper)

    if not validate_password(wrapper.save_file_password, wrapper.safe_file_text, encoding):
        raise ValueError("integrity token does not match the save data")

    raw_save_data = json.loads(wrapper.safe_file_text)
    jsonschema.validate(instance=raw_save_data, schema=load_schema(SAVE_DATA_SCHEMA))
    return SaveData.model_validate(raw_save_data)


def read_save_file(path: Path, capsule_id: str, encoding: EncodingType) -> SaveData:
    """
    Read a capsule file.

    Returns an empty SaveData when the file is missing, unreadable or corrupt.
    """
    empty = SaveData(capsule_id=capsule_id)
    if not path.exists():
        return empty

    try:
        save_data = parse_save_data(path.read_text(encoding='utf-8'), encoding)
    except jsonschema.ValidationError as e:
        logger.warning(f"Save file {path} is corrupt ({e.message}), new save file created")
        return empty
    except ValueError as e:
        # Also covers JSON, base64, UTF-8 and pydantic errors
        logger.warning(f"Save file {path} is corrupt ({e}), new save file created")
        return empty
    except OSError as e:
        logger.warning(f"Could not read save file {path}: {e}")
        return empty

    if save_data.capsule_id != capsule_id:
        logger.warning(
            f"Save file {path} belongs to capsule '{save_data.capsule_id}', "
            f"not '{capsule_id}'; new save file created"
        )
        return empty

    return save_data


def write_save_file(path: Path, save_data: SaveData, encoding: EncodingType) -> None:
    """
    Write a capsule file, replacing the previous one whole.

    Raises:
        OSError: If the file could not be written
    """
    text = serialize_save_data(save_data, encoding)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        with tmp.open('w', encoding='utf-8') as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise
