#
#  The pprof profile format: a gzip-compressed perftools.profiles.Profile
#  protobuf message. The schema is read from profile.proto next to this file.
#
import gzip
import zlib
from pathlib import Path
from google.protobuf import descriptor_pool, message_factory
from google.protobuf.message import DecodeError, EncodeError
from gostackprof.errors import ProfileParseError, WriteError
from gostackprof.proto import build_file_descriptor, parse_proto

PROTO_FILE = Path(__file__).with_name("profile.proto")
PACKAGE, SCHEMA = parse_proto(PROTO_FILE.read_text())

POOL = descriptor_pool.DescriptorPool()
POOL.AddSerializedFile(
    build_file_descriptor("gostackprof/profile.proto", PACKAGE, SCHEMA).SerializeToString())

def message_class(name):
    return message_factory.GetMessageClass(POOL.FindMessageTypeByName(f"{PACKAGE}.{name}"))

ProfileProto = message_class("Profile")

class Profile:
    """A pprof Profile message with id and string table lookups."""

    def __init__(self, message):
        self.message = message
        self.locations = {loc.id: loc for loc in message.location}
        self.functions = {func.id: func for func in message.function}
        self.strings = {}
        for i, s in enumerate(message.string_table):
            self.strings.setdefault(s, i)

    def copy(self):
        message = ProfileProto()
        message.CopyFrom(self.message)
        return Profile(message)

    def string(self, index):
        return self.message.string_table[index]

    def intern(self, s):
        if not self.message.string_table:
            self.message.string_table.append("")
            self.strings[""] = 0
        if s not in self.strings:
            self.strings[s] = len(self.message.string_table)
            self.message.string_table.append(s)
        return self.strings[s]

    def sample_types(self):
        return [(self.string(t.type), self.string(t.unit)) for t in self.message.sample_type]

    def function_name(self, location_id):
        lines = self.locations[location_id].line
        if not lines:
            return ""
        # Inlined calls come first; the last line is the physical frame.
        return self.string(self.functions[lines[-1].function_id].name)

    def add_sample_type(self, type_, unit):
        self.message.sample_type.add(type=self.intern(type_), unit=self.intern(unit))

    def add_function_location(self, name):
        func = self.message.function.add(id=max(self.functions, default=0) + 1,
                                         name=self.intern(name))
        self.functions[func.id] = func
        loc = self.message.location.add(id=max(self.locations, default=0) + 1)
        loc.line.add(function_id=func.id)
        self.locations[loc.id] = loc
        return loc.id

    def add_sample(self, template, location_ids, values):
        sample = self.message.sample.add()
        sample.label.extend(template.label)
        sample.location_id.extend(location_ids)
        sample.value.extend(values)
        return sample

def validate(profile):
    message = profile.message
    if message.string_table and message.string_table[0] != "":
        raise ProfileParseError("string table does not start with an empty string")

    def check_string(index, what):
        if not 0 <= index < len(message.string_table):
            raise ProfileParseError(f"{what}: string index {index} out of range")

    for t in message.sample_type:
        check_string(t.type, "sample type")
        check_string(t.unit, "sample type")
    for func in message.function:
        check_string(func.name, f"function #{func.id}")
    for loc in message.location:
        for line in loc.line:
            if line.function_id not in profile.functions:
                raise ProfileParseError(
                    f"location #{loc.id} refers to unknown function #{line.function_id}")
    for i, sample in enumerate(message.sample):
        if len(sample.value) != len(message.sample_type):
            raise ProfileParseError(
                f"sample #{i} has {len(sample.value)} values, "
                f"expected {len(message.sample_type)}")
        for location_id in sample.location_id:
            if location_id not in profile.locations:
                raise ProfileParseError(
                    f"sample #{i} refers to unknown location #{location_id}")

def parse(data):
    if len(data) == 0:
        raise ProfileParseError("empty input file")

    if data[:2] == b"\x1f\x8b":
        try:
            data = gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as e:
            raise ProfileParseError(f"decompressing profile: {e}")

    message = ProfileProto()
    try:
        message.ParseFromString(data)
    except DecodeError as e:
        raise ProfileParseError(f"decoding profile: {e}",
                                "Is it a pprof profile (debug=0)?")

    profile = Profile(message)
    validate(profile)
    return profile

def serialize(profile):
    try:
        return gzip.compress(profile.message.SerializeToString())
    except EncodeError as e:
        raise WriteError(f"encoding profile: {e}")

def write(profile, stream):
    data = serialize(profile)
    try:
        stream.write(data)
        stream.flush()
    except OSError as e:
        raise WriteError(f"writing profile: {e}")
