"""
PE Import Table Parser
=======================

Manual :mod:`struct`-based reader for the import directory of Portable
Executable images (PE32 and PE32+).  Only the structures needed to walk
the imports are decoded:

    DOS header ── e_lfanew ──► "PE\\0\\0"
                               COFF header (section count, optional size)
                               Optional header (magic, data directories)
                               Section table (RVA → file offset mapping)
    Import directory ──► IMAGE_IMPORT_DESCRIPTOR[] ──► lookup thunks
                                                      ──► hint/name entries

Imports by ordinal carry no name and are skipped: matching is by name.

References:
    - Microsoft. (2024). PE Format. Microsoft Learn.
      https://learn.microsoft.com/en-us/windows/win32/debug/pe-format
    - Pietrek, M. (2002). An In-Depth Look into the Win32 Portable
      Executable File Format. MSDN Magazine.
"""

from __future__ import annotations

import struct
from typing import NamedTuple, Optional

from apiscan.core.errors import UnsupportedFormat

# ---------------------------------------------------------------------------
# PE constants
# ---------------------------------------------------------------------------

MZ_MAGIC: bytes = b"MZ"
PE_MAGIC: bytes = b"PE\x00\x00"

PE32_MAGIC: int = 0x10B
PE32PLUS_MAGIC: int = 0x20B

IMAGE_DIRECTORY_ENTRY_IMPORT: int = 1

_COFF_HEADER = struct.Struct("<HHIIIHH")
_SECTION_FIELDS = struct.Struct("<IIIIIIHHI")
_IMPORT_DESCRIPTOR = struct.Struct("<IIIII")

_SECTION_HEADER_SIZE = 40
_MAX_DESCRIPTORS = 4096
_MAX_THUNKS = 65536
_MAX_NAME_LENGTH = 512


class ImportedFunction(NamedTuple):
    """One named import: the DLL it comes from and the function name."""
    dll: str
    name: str


class _Section(NamedTuple):
    virtual_address: int
    virtual_size: int
    raw_offset: int
    raw_size: int


class PEImportParser:
    """Walk the import directory of a PE image.

    Usage::

        parser = PEImportParser(data)
        for dll, name in parser.imports():
            ...

    Args:
        data: Complete file contents.

    Raises:
        UnsupportedFormat: If *data* is not a PE image.
    """

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._sections: list[_Section] = []
        self._is_pe32plus = False
        self._import_rva = 0
        self._parse_headers()

    @property
    def is_pe32plus(self) -> bool:
        return self._is_pe32plus

    # ------------------------------------------------------------------ #
    #  Public interface
    # ------------------------------------------------------------------ #

    def imports(self) -> list[ImportedFunction]:
        """Return every named import in descriptor order."""
        result: list[ImportedFunction] = []
        if self._import_rva == 0:
            return result

        offset = self._rva_to_offset(self._import_rva)
        if offset is None:
            return result

        for idx in range(_MAX_DESCRIPTORS):
            entry = offset + idx * _IMPORT_DESCRIPTOR.size
            if entry + _IMPORT_DESCRIPTOR.size > len(self._data):
                break
            lookup_rva, _, _, name_rva, iat_rva = _IMPORT_DESCRIPTOR.unpack_from(
                self._data, entry
            )
            # All-zero descriptor terminates the table
            if lookup_rva == 0 and name_rva == 0 and iat_rva == 0:
                break

            dll = self._read_rva_string(name_rva)
            thunks_rva = lookup_rva or iat_rva
            for name in self._thunk_names(thunks_rva):
                result.append(ImportedFunction(dll, name))

        return result

    def import_names(self) -> set[str]:
        """Return the distinct imported function names."""
        return {imported.name for imported in self.imports()}

    # ------------------------------------------------------------------ #
    #  Headers
    # ------------------------------------------------------------------ #

    def _parse_headers(self) -> None:
        data = self._data
        if len(data) < 64 or data[:2] != MZ_MAGIC:
            raise UnsupportedFormat("not a PE image: missing MZ header")

        try:
            pe_offset = struct.unpack_from("<I", data, 60)[0]
            if data[pe_offset:pe_offset + 4] != PE_MAGIC:
                raise UnsupportedFormat("not a PE image: missing PE signature")

            coff = pe_offset + 4
            (_, section_count, _, _, _, optional_size, _) = _COFF_HEADER.unpack_from(data, coff)

            optional = coff + _COFF_HEADER.size
            magic = struct.unpack_from("<H", data, optional)[0]
            if magic == PE32PLUS_MAGIC:
                self._is_pe32plus = True
                count_offset, directories = optional + 108, optional + 112
            elif magic == PE32_MAGIC:
                count_offset, directories = optional + 92, optional + 96
            else:
                raise UnsupportedFormat(f"unknown optional header magic 0x{magic:x}")

            directory_count = struct.unpack_from("<I", data, count_offset)[0]
            if directory_count > IMAGE_DIRECTORY_ENTRY_IMPORT:
                self._import_rva = struct.unpack_from(
                    "<I", data, directories + IMAGE_DIRECTORY_ENTRY_IMPORT * 8
                )[0]

            self._parse_sections(optional + optional_size, section_count)
        except struct.error as exc:
            raise UnsupportedFormat(f"truncated PE headers: {exc}") from exc

    def _parse_sections(self, offset: int, count: int) -> None:
        for idx in range(count):
            start = offset + idx * _SECTION_HEADER_SIZE
            if start + _SECTION_HEADER_SIZE > len(self._data):
                break
            # Skip the 8-byte name
            virtual_size, virtual_address, raw_size, raw_offset, *_ = (
                _SECTION_FIELDS.unpack_from(self._data, start + 8)
            )
            self._sections.append(
                _Section(virtual_address, virtual_size, raw_offset, raw_size)
            )

    # ------------------------------------------------------------------ #
    #  Import lookup table
    # ------------------------------------------------------------------ #

    def _thunk_names(self, thunks_rva: int) -> list[str]:
        offset = self._rva_to_offset(thunks_rva) if thunks_rva else None
        if offset is None:
            return []

        if self._is_pe32plus:
            fmt, size, ordinal_flag = "<Q", 8, 1 << 63
        else:
            fmt, size, ordinal_flag = "<I", 4, 1 << 31

        names: list[str] = []
        for idx in range(_MAX_THUNKS):
            position = offset + idx * size
            if position + size > len(self._data):
                break
            thunk = struct.unpack_from(fmt, self._data, position)[0]
            if thunk == 0:
                break
            if thunk & ordinal_flag:
                continue
            # Hint/name entry: 2-byte hint, then the NUL-terminated name
            name = self._read_rva_string((thunk & 0x7FFFFFFF) + 2)
            if name:
                names.append(name)
        return names

    # ------------------------------------------------------------------ #
    #  Address helpers
    # ------------------------------------------------------------------ #

    def _rva_to_offset(self, rva: int) -> Optional[int]:
        for section in self._sections:
            end = section.virtual_address + max(section.virtual_size, section.raw_size)
            if section.virtual_address <= rva < end:
                offset = section.raw_offset + (rva - section.virtual_address)
                return offset if offset < len(self._data) else None
        # Headers are mapped at their file offsets
        first = min((s.virtual_address for s in self._sections), default=0x1000)
        if rva < first and rva < len(self._data):
            return rva
        return None

    def _read_rva_string(self, rva: int) -> str:
        offset = self._rva_to_offset(rva)
        if offset is None:
            return ""
        end = self._data.find(b"\x00", offset, offset + _MAX_NAME_LENGTH)
        if end == -1:
            end = min(offset + _MAX_NAME_LENGTH, len(self._data))
        return self._data[offset:end].decode("ascii", errors="replace")


def extract_imports(data: bytes) -> set[str]:
    """Return the distinct function names imported by the PE image *data*.

    Raises:
        UnsupportedFormat: If *data* is not a PE image.
    """
    return PEImportParser(data).import_names()
