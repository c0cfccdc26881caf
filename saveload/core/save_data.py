"""
On-disk envelope.

One SaveData per capsule, holding the stores of every reference saved in
it. The envelope is written as JSON inside a SaveFileWrapper that carries
an integrity token (see saveload.core.codec).
"""

from __future__ import annotations

from saveload.core.values import StorageModel, ValueSection


class SaveDataItem(StorageModel):
    """A value key and its section."""
    key: str
    value_section: ValueSection


class ReferenceDataItem(StorageModel):
    """A reference key and its id (or comma separated ids)."""
    key: str
    value: str


class SaveDataForReference(StorageModel):
    """The stored values and references of one reference id."""
    reference_id: str
    value_data_items: list[SaveDataItem] = []
    reference_data_items: list[ReferenceDataItem] = []

    def values_by_key(self) -> dict[str, ValueSection]:
        return {item.key: item.value_section for item in self.value_data_items}

    def references_by_key(self) -> dict[str, str]:
        return {item.key: item.value for item in self.reference_data_items}


class SaveData(StorageModel):
    """Everything stored for one capsule."""
    capsule_id: str
    references_save_data: list[SaveDataForReference] = []


class SaveFileWrapper(StorageModel):
    """The file contents: envelope text plus its integrity token."""
    save_file_password: str
    safe_file_text: str
