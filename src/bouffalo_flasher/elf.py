"""
Minimal ELF32 reader for RISC-V firmware builds.

Only what the segment loader needs: the entry point and the PT_LOAD
program headers, turned into Segment objects at their physical address
(p_paddr), in file order. Zero-fill (.bss) past p_filesz is not sent;
the startup code clears it.
"""

import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple, Union

from bouffalo_flasher.errors import FormatError, TruncatedInputError
from bouffalo_flasher.firmware_image import Segment, VirtAddr

logger = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"
ELFCLASS32 = 1
ELFDATA2LSB = 1
EM_RISCV = 0xF3

PT_LOAD = 1

# e_type .. e_shstrndx, following the 16-byte e_ident
_ELF_HEADER = struct.Struct("<HHIIIIIHHHHHH")
# p_type, p_offset, p_vaddr, p_paddr, p_filesz, p_memsz, p_flags, p_align
_PROGRAM_HEADER = struct.Struct("<IIIIIIII")


@dataclass(frozen=True)
class ProgramHeader:
    p_type: int
    offset: int
    vaddr: int
    paddr: int
    filesz: int
    memsz: int
    flags: int


@dataclass(frozen=True)
class ElfImage:
    """Entry point and loadable segments of an ELF file."""

    entry: int
    machine: int
    segments: Tuple[Segment, ...]

    @property
    def total_size(self) -> int:
        return sum(segment.size for segment in self.segments)


def _program_headers(blob: bytes, phoff: int, phentsize: int, phnum: int) -> List[ProgramHeader]:
    if phnum and phentsize < _PROGRAM_HEADER.size:
        raise FormatError(f"ELF program header entries are too small ({phentsize} bytes)")
    headers = []
    for index in range(phnum):
        off = phoff + index * phentsize
        if off + _PROGRAM_HEADER.size > len(blob):
            raise TruncatedInputError(f"ELF program header {index} is out of range")
        p_type, p_offset, p_vaddr, p_paddr, p_filesz, p_memsz, p_flags, _align = (
            _PROGRAM_HEADER.unpack_from(blob, off)
        )
        headers.append(ProgramHeader(p_type, p_offset, p_vaddr, p_paddr, p_filesz, p_memsz, p_flags))
    return headers


def read_elf_segments(blob: bytes) -> ElfImage:
    """
    Parse an ELF32 little-endian image.

    Raises:
        FormatError: Not an ELF32 LE file
        TruncatedInputError: A header or segment runs past the end of the file
    """
    if len(blob) < 16 + _ELF_HEADER.size:
        raise TruncatedInputError(f"ELF header: expected 52 bytes, got {len(blob)}")
    if blob[:4] != ELF_MAGIC:
        raise FormatError(f"ELF magic missing (got {blob[:4]!r})")
    if blob[4] != ELFCLASS32:
        raise FormatError("Not a 32-bit ELF file")
    if blob[5] != ELFDATA2LSB:
        raise FormatError("Not a little-endian ELF file")

    (
        _e_type, e_machine, _e_version, e_entry, e_phoff, _e_shoff, _e_flags,
        _e_ehsize, e_phentsize, e_phnum, _e_shentsize, _e_shnum, _e_shstrndx,
    ) = _ELF_HEADER.unpack_from(blob, 16)

    if e_machine != EM_RISCV:
        logger.warning(f"ELF machine is 0x{e_machine:X}, not RISC-V")

    segments = []
    for header in _program_headers(blob, e_phoff, e_phentsize, e_phnum):
        if header.p_type != PT_LOAD or header.filesz == 0:
            continue
        end = header.offset + header.filesz
        if end > len(blob):
            raise TruncatedInputError(
                f"ELF segment @ 0x{header.paddr:08X} runs past end of file"
            )
        segments.append(Segment(VirtAddr(header.paddr), blob[header.offset:end]))
        logger.debug(
            f"PT_LOAD paddr=0x{header.paddr:08X} vaddr=0x{header.vaddr:08X} "
            f"filesz={header.filesz} memsz={header.memsz}"
        )

    return ElfImage(entry=e_entry, machine=e_machine, segments=tuple(segments))


def load_elf(path: Union[str, Path]) -> ElfImage:
    return read_elf_segments(Path(path).read_bytes())
