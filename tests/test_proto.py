import pytest
from google.protobuf import descriptor_pool, message_factory
from gostackprof import pprof
from gostackprof.proto import InvalidProtoException, build_file_descriptor, parse_proto

PROTO = """
// A comment.
syntax = "proto3";
package example.v1;
option go_package = "example.com/v1";

message Outer {
  repeated Inner inner = 1;
  string name = 2; // Trailing comment.
}

message Inner {
  uint64 id = 1;
  repeated int64 values = 3;
}
"""

def test_parse_proto():
    package, messages = parse_proto(PROTO)
    assert package == "example.v1"
    assert messages == [
        ("Outer", [("inner", 1, "Inner", True), ("name", 2, "string", False)]),
        ("Inner", [("id", 1, "uint64", False), ("values", 3, "int64", True)]),
    ]

def test_build_file_descriptor():
    package, messages = parse_proto(PROTO)
    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(build_file_descriptor("example.proto", package, messages).SerializeToString())
    Outer = message_factory.GetMessageClass(pool.FindMessageTypeByName("example.v1.Outer"))
    message = Outer(name="x")
    message.inner.add(id=7, values=[1, 2])
    parsed = Outer.FromString(message.SerializeToString())
    assert parsed.inner[0].id == 7
    assert list(parsed.inner[0].values) == [1, 2]

@pytest.mark.parametrize("text", [
    'message A { int64 x = 1; }',
    'package p; message A { Missing x = 1; }',
    'package p; message A { int64 x = 1; int64 y = 1; }',
])
def test_invalid_proto(text):
    with pytest.raises(InvalidProtoException):
        parse_proto(text)

def test_profile_field_numbers():
    # These must match github.com/google/pprof/proto/profile.proto.
    assert pprof.PACKAGE == "perftools.profiles"
    schema = {name: {f[0]: f[1:] for f in fields} for name, fields in pprof.SCHEMA}
    assert schema["Profile"]["sample_type"] == (1, "ValueType", True)
    assert schema["Profile"]["string_table"] == (6, "string", True)
    assert schema["Profile"]["period_type"] == (11, "ValueType", False)
    assert schema["Sample"]["location_id"] == (1, "uint64", True)
    assert schema["Sample"]["value"] == (2, "int64", True)
    assert schema["Location"]["line"] == (4, "Line", True)
    assert schema["Line"]["function_id"] == (1, "uint64", False)
    assert schema["Function"]["name"] == (2, "int64", False)
    fields = pprof.ProfileProto.DESCRIPTOR.fields_by_name
    assert fields["function"].number == 5
