"""Shared fixtures: an in-memory remote source, sample stores and PE images."""

from __future__ import annotations

import asyncio
import struct
from typing import Optional, Union

import pytest

from shared.logger import QuarryLogger

from apiscan.core.errors import DetailFetchFailed
from apiscan.core.models import ApiDetail, ApiRecord, Category, CategoryIndex, RecordStore

# ---------------------------------------------------------------------------
# Remote source double
# ---------------------------------------------------------------------------

DetailOutcome = Union[ApiDetail, None, Exception]


class FakeSource:
    """In-memory :class:`RemoteSource` that records its concurrency.

    *details* maps a name to the detail to return, ``None`` for "not
    available", or an exception instance to raise.  Names missing from
    *details* get a generated detail.
    """

    def __init__(
        self,
        headers: list[str],
        members: list[list[str]],
        details: Optional[dict[str, DetailOutcome]] = None,
        *,
        delay: float = 0.0,
        index_error: Optional[Exception] = None,
    ) -> None:
        self.headers = headers
        self.members = members
        self.details = details or {}
        self.delay = delay
        self.index_error = index_error
        self.index_calls = 0
        self.detail_calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_index(self) -> CategoryIndex:
        self.index_calls += 1
        if self.index_error is not None:
            raise self.index_error
        return CategoryIndex.model_construct(headers=self.headers, members=self.members)

    async def fetch_detail(self, name: str) -> Optional[ApiDetail]:
        self.detail_calls.append(name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            outcome = self.details.get(name, default_detail(name))
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1


def default_detail(name: str) -> ApiDetail:
    return ApiDetail(
        summary=f"{name} summary",
        library="kernel32.dll",
        documentation_url=f"https://learn.microsoft.com/{name.lower()}",
    )


def failing(name: str) -> DetailFetchFailed:
    return DetailFetchFailed(name, "HTTP 500")


@pytest.fixture()
def quiet_logger() -> QuarryLogger:
    return QuarryLogger("apiscan.tests", log_level="DEBUG", console_output=False)


@pytest.fixture()
def fake_source() -> FakeSource:
    return FakeSource(
        headers=["Injection", "Anti-Debugging"],
        members=[
            ["VirtualAllocEx", "WriteProcessMemory", "CreateRemoteThread"],
            ["IsDebuggerPresent", "CheckRemoteDebuggerPresent"],
        ],
    )


# ---------------------------------------------------------------------------
# Record stores
# ---------------------------------------------------------------------------

def make_store(categories: dict[str, list[str]], *, details: bool = True) -> RecordStore:
    store = RecordStore()
    for header, names in categories.items():
        records = [
            ApiRecord(name=name, **default_detail(name).model_dump()) if details else ApiRecord(name=name)
            for name in names
        ]
        store.categories.append(Category.from_records(header, records))
    return store


@pytest.fixture()
def sample_store() -> RecordStore:
    return make_store(
        {
            "Enumeration": ["CreateToolhelp32Snapshot", "Process32First"],
            "Injection": ["VirtualAllocEx", "WriteProcessMemory", "CreateRemoteThread"],
            "Anti-Debugging": ["IsDebuggerPresent", "CheckRemoteDebuggerPresent"],
        }
    )


# ---------------------------------------------------------------------------
# PE image builder
# ---------------------------------------------------------------------------

_SECTION_RVA = 0x1000
_SECTION_RAW = 0x200


def build_pe(
    imports: dict[str, list[Union[str, int]]],
    *,
    pe32plus: bool = False,
    iat_only: bool = False,
) -> bytes:
    """Build a minimal PE image with one ``.idata`` section.

    *imports* maps a DLL name to its imports: a ``str`` is imported by
    name, an ``int`` by ordinal.
    """
    thunk_fmt, thunk_size = ("<Q", 8) if pe32plus else ("<I", 4)
    ordinal_flag = 1 << 63 if pe32plus else 1 << 31

    descriptor_size = 20 * (len(imports) + 1)
    blob = bytearray(descriptor_size)

    for index, (dll, functions) in enumerate(imports.items()):
        thunk_pos = len(blob)
        blob += bytes(thunk_size * (len(functions) + 1))
        name_pos = len(blob)
        blob += dll.encode("ascii") + b"\x00"

        thunks: list[int] = []
        for function in functions:
            if isinstance(function, int):
                thunks.append(ordinal_flag | function)
                continue
            if len(blob) % 2:
                blob += b"\x00"
            hint_pos = len(blob)
            blob += struct.pack("<H", 0) + function.encode("ascii") + b"\x00"
            thunks.append(_SECTION_RVA + hint_pos)

        for slot, value in enumerate(thunks):
            struct.pack_into(thunk_fmt, blob, thunk_pos + slot * thunk_size, value)

        thunks_rva = _SECTION_RVA + thunk_pos
        struct.pack_into(
            "<IIIII", blob, index * 20,
            0 if iat_only else thunks_rva, 0, 0, _SECTION_RVA + name_pos, thunks_rva,
        )

    raw_size = (len(blob) + 0x1FF) & ~0x1FF
    blob += bytes(raw_size - len(blob))

    optional_size = 240 if pe32plus else 224
    optional = bytearray(optional_size)
    struct.pack_into("<H", optional, 0, 0x20B if pe32plus else 0x10B)
    count_offset, directories = (108, 112) if pe32plus else (92, 96)
    struct.pack_into("<I", optional, count_offset, 16)
    struct.pack_into("<II", optional, directories + 8, _SECTION_RVA, descriptor_size)

    dos = bytearray(64)
    dos[0:2] = b"MZ"
    struct.pack_into("<I", dos, 60, 0x40)

    coff = struct.pack(
        "<HHIIIHH",
        0x8664 if pe32plus else 0x14C, 1, 0, 0, 0, optional_size,
        0x0022 if pe32plus else 0x0102,
    )
    section = b".idata\x00\x00" + struct.pack(
        "<IIIIIIHHI",
        len(blob), _SECTION_RVA, raw_size, _SECTION_RAW, 0, 0, 0, 0, 0xC0000040,
    )

    headers = bytes(dos) + b"PE\x00\x00" + coff + bytes(optional) + section
    headers += bytes(_SECTION_RAW - len(headers))
    return headers + bytes(blob)


@pytest.fixture()
def sample_pe(tmp_path):
    path = tmp_path / "sample.exe"
    path.write_bytes(
        build_pe(
            {
                "KERNEL32.dll": ["VirtualAllocEx", "WriteProcessMemory", "CreateFileA", 17],
                "USER32.dll": ["MessageBoxA", "IsDebuggerPresent"],
            }
        )
    )
    return path
