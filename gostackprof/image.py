from collections import namedtuple
import struct
from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile
from macholib.MachO import MachO
from macholib.mach_o import LC_SEGMENT, LC_SEGMENT_64
from gostackprof.errors import ImageFormatError, MissingSectionError

ELF_MAGIC = b"\x7fELF"
TEXT_SECTION = "text"
PCLNTAB_SECTION = "gopclntab"

Image = namedtuple("Image", ["path", "format", "text_addr", "pclntab"])
Section = namedtuple("Section", ["name", "addr", "read"])

def select_sections(path, sections):
    """Returns the text address and the contents of the pclntab section."""
    text_addr = None
    for section in sections:
        if TEXT_SECTION in section.name:
            # There can be more than one text section. The last one wins.
            text_addr = section.addr
    if text_addr is None:
        raise MissingSectionError(f"{path}: could not find text addr")

    for section in sections:
        if PCLNTAB_SECTION in section.name:
            return text_addr, section.read()
    raise MissingSectionError(f"{path}: could not find gopclntab",
                              "Was the binary stripped by a non-Go tool?")

def load_elf(path):
    with open(path, "rb") as f:
        elf = ELFFile(f)
        sections = [Section(s.name, s["sh_addr"], s.data) for s in elf.iter_sections()]
        text_addr, pclntab = select_sections(path, sections)
    return Image(path, "elf", text_addr, pclntab)

def load_macho(path):
    macho = MachO(path)
    header = macho.headers[0]

    def reader(offset, size):
        def read():
            with open(path, "rb") as f:
                f.seek(header.offset + offset)
                return f.read(size)
        return read

    sections = []
    for lc, _, data in header.commands:
        if lc.cmd not in (LC_SEGMENT, LC_SEGMENT_64):
            continue
        for sect in data:
            name = sect.sectname.rstrip(b"\0").decode("ascii", "replace")
            sections.append(Section(name, sect.addr, reader(sect.offset, sect.size)))

    text_addr, pclntab = select_sections(path, sections)
    return Image(path, "macho", text_addr, pclntab)

def load_image(path):
    with open(path, "rb") as f:
        magic = f.read(4)

    if magic == ELF_MAGIC:
        try:
            return load_elf(path)
        except ELFError as e:
            raise ImageFormatError(f"{path}: malformed ELF file ({e})")

    try:
        return load_macho(path)
    except (ValueError, struct.error, OSError) as e:
        raise ImageFormatError(f"{path}: neither an ELF nor a Mach-O file ({e})")
