#
#  Reads the Go linker's pc-value table (.gopclntab) and computes how many
#  bytes each function's own frame can push onto the goroutine stack.
#
#  The table layout is private to the Go toolchain and changes between
#  releases. Every generation we understand is listed in LAYOUTS below; a
#  new one only needs a new entry there.
#
from collections import namedtuple
import struct
from gostackprof.errors import PclntabError
from gostackprof.image import load_image

GO12_MAGIC = 0xfffffffb
GO116_MAGIC = 0xfffffffa
GO118_MAGIC = 0xfffffff0
GO120_MAGIC = 0xfffffff1

# Indices of the header words (following the 8-byte prefix) holding the
# offsets of each table from the start of the section. None means the
# table starts at the beginning of the section (go1.2 has no such words).
# With relative_entries, functab and _func store 32-bit entry offsets from
# the start of the text instead of absolute pointer-sized entry PCs.
Layout = namedtuple("Layout", [
    "version", "nfunctab", "funcnametab", "pctab", "funcdata", "relative_entries",
])

LAYOUTS = {
    GO12_MAGIC: Layout("go1.2", nfunctab=0, funcnametab=None, pctab=None,
                       funcdata=None, relative_entries=False),
    GO116_MAGIC: Layout("go1.16", nfunctab=0, funcnametab=2, pctab=5,
                        funcdata=6, relative_entries=False),
    GO118_MAGIC: Layout("go1.18", nfunctab=0, funcnametab=3, pctab=6,
                        funcdata=7, relative_entries=True),
    GO120_MAGIC: Layout("go1.20", nfunctab=0, funcnametab=3, pctab=6,
                        funcdata=7, relative_entries=True),
}

# runtime._func: an entry field followed by 32-bit fields.
FUNC_NAMEOFF = 1
FUNC_PCSP = 4

Func = namedtuple("Func", ["index", "name", "entry", "end"])

def decode_leb128(buf, offset):
    value = 0
    i = 0
    while True:
        try:
            b = buf[offset + i]
        except IndexError:
            raise PclntabError(f"truncated varint at offset {offset:#x}")
        value |= (b & 0x7f) << (7 * i)
        if b & 0x80 == 0:
            return value & 0xffffffff, offset + i + 1
        i += 1

class LineTable:
    def __init__(self, data, text_addr):
        self.data = data
        self.text_addr = text_addr
        if len(data) < 16 or data[4] != 0 or data[5] != 0 \
                or data[6] not in (1, 2, 4) or data[7] not in (4, 8):
            raise PclntabError("unrecognized gopclntab header",
                               "Is the binary built by Go 1.2 or later?")

        for order in ("<", ">"):
            magic = struct.unpack_from(order + "I", data)[0]
            if magic in LAYOUTS:
                break
        else:
            raise PclntabError(f"unsupported gopclntab magic: {data[:4].hex()}",
                               "Add its layout to LAYOUTS in gostackprof/pclntab.py.")

        self.order = order
        self.layout = LAYOUTS[magic]
        self.version = self.layout.version
        self.quantum = data[6]
        self.ptrsize = data[7]
        self.nfunctab = self.word(self.layout.nfunctab)
        self.funcnametab = self.table(self.layout.funcnametab)
        self.pctab = self.table(self.layout.pctab)
        if self.layout.funcdata is None:
            self.funcdata = 0
            self.functab = 8 + self.ptrsize
        else:
            self.funcdata = self.functab = self.word(self.layout.funcdata)

        self.field_size = 4 if self.layout.relative_entries else self.ptrsize
        functab_end = self.functab + (self.nfunctab * 2 + 1) * self.field_size
        if functab_end > len(data):
            raise PclntabError(f"function table ends at {functab_end:#x}, "
                               f"beyond the end of gopclntab ({len(data):#x})")

    def unpack(self, fmt, offset):
        try:
            return struct.unpack_from(self.order + fmt, self.data, offset)[0]
        except struct.error:
            raise PclntabError(f"gopclntab offset {offset:#x} is out of range")

    def uint32(self, offset):
        return self.unpack("I", offset)

    def uintptr(self, offset):
        return self.unpack("Q" if self.ptrsize == 8 else "I", offset)

    def field(self, offset):
        return self.uint32(offset) if self.field_size == 4 else self.uintptr(offset)

    def word(self, n):
        return self.uintptr(8 + n * self.ptrsize)

    def table(self, word):
        return 0 if word is None else self.word(word)

    def pc(self, i):
        value = self.field(self.functab + 2 * i * self.field_size)
        if self.layout.relative_entries:
            return self.text_addr + value
        return value

    def func_field(self, i, n):
        func = self.funcdata + self.field(self.functab + (2 * i + 1) * self.field_size)
        entry_size = 4 if self.layout.relative_entries else self.ptrsize
        return self.uint32(func + entry_size + (n - 1) * 4)

    def func_name(self, i):
        start = self.funcnametab + self.func_field(i, FUNC_NAMEOFF)
        end = self.data.find(b"\0", start)
        if start >= len(self.data) or end < 0:
            raise PclntabError(f"bad name offset for function #{i}")
        return self.data[start:end].decode("utf-8", "replace")

    def funcs(self):
        for i in range(self.nfunctab):
            yield Func(i, self.func_name(i), self.pc(i), self.pc(i + 1))

    def max_sp_delta(self, i):
        """Returns the largest SP delta in the function's pcsp table.

        This is what the runtime's funcMaxSPDelta computes: the table is a
        sequence of (zig-zag value delta, pc delta) varint pairs starting
        from -1, terminated by a zero value delta on any but the first
        step.
        """
        pcsp = self.func_field(i, FUNC_PCSP)
        if pcsp == 0:
            return 0

        p = self.pctab + pcsp
        pc = 0
        value = -1
        most = 0
        while True:
            first = pc == 0
            uvdelta, p = decode_leb128(self.data, p)
            if uvdelta == 0 and not first:
                return most
            value += -(uvdelta & 1) ^ (uvdelta >> 1)
            pcdelta, p = decode_leb128(self.data, p)
            pc += pcdelta * self.quantum
            most = max(most, value)

class FuncIndex:
    """Function name to max SP delta lookups over a LineTable.

    Each function is decoded at most once; names the table does not know
    (assembly stubs, cgo trampolines, ...) resolve to 0.
    """

    def __init__(self, table):
        self.table = table
        self.funcs = list(table.funcs())
        self.positions = {}
        for func in self.funcs:
            self.positions[func.name] = func.index
        self.cache = {}

    def names(self):
        return [func.name for func in self.funcs]

    def resolve(self, name):
        if name in self.cache:
            return self.cache[name]
        i = self.positions.get(name)
        delta = 0 if i is None else self.table.max_sp_delta(i)
        self.cache[name] = delta
        return delta

def load_index(path):
    image = load_image(path)
    return image, FuncIndex(LineTable(image.pclntab, image.text_addr))
