#
#  A reader for the small subset of the proto3 language that profile.proto
#  uses: a package, plain messages and scalar or message-typed fields.
#
from google.protobuf import descriptor_pb2
from lark import Lark, Transformer

GRAMMAR = r"""
NAME: /[a-zA-Z_][a-zA-Z0-9_.]*/
STRING: /"[^"]*"/
COMMENT: /\/\/[^\n]*/
REPEATED: "repeated"

%import common.INT
%import common.WS
%ignore WS
%ignore COMMENT

proto: statement*
?statement: syntax | package | option | message
syntax: "syntax" "=" STRING ";"
package: "package" NAME ";"
option: "option" NAME "=" STRING ";"
message: "message" NAME "{" field* "}"
field: [REPEATED] NAME NAME "=" INT ";"
"""

FieldType = descriptor_pb2.FieldDescriptorProto
SCALAR_TYPES = {
    "int64": FieldType.TYPE_INT64,
    "uint64": FieldType.TYPE_UINT64,
    "bool": FieldType.TYPE_BOOL,
    "string": FieldType.TYPE_STRING,
}

class ProtoTransformer(Transformer):
    def field(self, child):
        repeated, type_, name, number = child
        return (str(name), int(number), str(type_), repeated is not None)

    def message(self, child):
        name, *fields = child
        return (str(name), fields)

    def proto(self, child):
        package = None
        messages = []
        for statement in child:
            if isinstance(statement, str):
                package = statement
            elif statement is not None:
                messages.append(statement)
        return package, messages

    syntax = lambda _, child: None
    option = lambda _, child: None
    package = lambda _, child: str(child[0])

class InvalidProtoException(Exception):
    pass

def validate_proto(package, messages):
    if package is None:
        raise InvalidProtoException("The package must be specified.")

    message_names = [name for name, _ in messages]
    for message_name, fields in messages:
        used_numbers = []
        for name, number, type_, _ in fields:
            if type_ not in SCALAR_TYPES and type_ not in message_names:
                raise InvalidProtoException(f"Unknown type: `{type_}' ({message_name}.{name})")
            if number in used_numbers:
                raise InvalidProtoException(
                    f"The duplicated field number: {number} ({message_name}.{name})")
            used_numbers.append(number)

def parse_proto(text):
    """Returns (package, [(message, [(field, number, type, repeated)])])."""
    ast = Lark(GRAMMAR, start="proto").parse(text)
    package, messages = ProtoTransformer().transform(ast)
    validate_proto(package, messages)
    return package, messages

def build_file_descriptor(filename, package, messages):
    file_proto = descriptor_pb2.FileDescriptorProto(
        name=filename, package=package, syntax="proto3")
    for message_name, fields in messages:
        message = file_proto.message_type.add(name=message_name)
        for name, number, type_, repeated in fields:
            field = message.field.add(name=name, number=number)
            field.label = FieldType.LABEL_REPEATED if repeated else FieldType.LABEL_OPTIONAL
            if type_ in SCALAR_TYPES:
                field.type = SCALAR_TYPES[type_]
            else:
                field.type = FieldType.TYPE_MESSAGE
                field.type_name = f".{package}.{type_}"
    return file_proto
