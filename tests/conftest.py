"""
Pytest configuration and shared fixtures for protoc-gen-entity tests.

Key concepts:
    - Schema files are built in-process as FileDescriptorProto values, the
      same form protoc hands to a plugin
    - (entity.ignore) and (entity.identifier) are set through the entity_pb2
      extensions, exactly as protoc would decode them
    - Tests marked `integration` run a real protoc from grpcio-tools
"""

import sys
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from google.protobuf import descriptor_pb2


# =============================================================================
# Path Constants
# =============================================================================

# Repository root directory
REPO_ROOT = Path(__file__).parent.parent.absolute()

# Tests directory
TESTS_DIR = Path(__file__).parent.absolute()

# Example .proto files used by the integration tests
PROTOS_DIR = TESTS_DIR / "protos"

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from entity_generator import entity_generator  # noqa: E402
from entity_generator.entity_identifier import Globals  # noqa: E402

TYPE_STRING = descriptor_pb2.FieldDescriptorProto.TYPE_STRING
TYPE_INT64 = descriptor_pb2.FieldDescriptorProto.TYPE_INT64
TYPE_BYTES = descriptor_pb2.FieldDescriptorProto.TYPE_BYTES


# =============================================================================
# Utility Functions
# =============================================================================

def encode_varint(value: int) -> bytes:
    """Encode an unsigned protobuf varint."""
    out = bytearray()
    while True:
        bits = value & 0x7f
        value >>= 7
        if value:
            out.append(bits | 0x80)
        else:
            out.append(bits)
            return bytes(out)


def length_delimited(field_number: int, payload: bytes) -> bytes:
    """Wire bytes of a length-delimited field, e.g. a string where a bool belongs."""
    return encode_varint((field_number << 3) | 2) + encode_varint(len(payload)) + payload


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def entity_pb2():
    """The compiled entity.proto module used by the generator."""
    return entity_generator.entity_pb2


@pytest.fixture(autouse=True)
def quiet_globals():
    """Reset verbose output around each test."""
    Globals.verbose = False
    yield
    Globals.verbose = False


@pytest.fixture
def make_field(entity_pb2) -> Callable[..., descriptor_pb2.FieldDescriptorProto]:
    """
    Build a FieldDescriptorProto.

    identifier=None leaves the option absent, True/False set it, and
    malformed=True stores a string under the identifier's field number.
    """
    def _make_field(name: str, kind: int = TYPE_STRING, number: int = 0,
                    identifier: Optional[bool] = None,
                    malformed: bool = False,
                    repeated: bool = False) -> descriptor_pb2.FieldDescriptorProto:
        label = (descriptor_pb2.FieldDescriptorProto.LABEL_REPEATED if repeated
                 else descriptor_pb2.FieldDescriptorProto.LABEL_OPTIONAL)
        field = descriptor_pb2.FieldDescriptorProto(name=name, number=number, type=kind, label=label)
        if identifier is not None:
            field.options.Extensions[entity_pb2.identifier] = identifier
        if malformed:
            field.options.MergeFromString(length_delimited(entity_pb2.identifier.number, b'yes'))
        return field

    return _make_field


@pytest.fixture
def make_message(entity_pb2) -> Callable[..., descriptor_pb2.DescriptorProto]:
    """Build a DescriptorProto from fields, optionally with (entity.ignore)."""
    def _make_message(name: str, fields: Optional[List[descriptor_pb2.FieldDescriptorProto]] = None,
                      ignore: Optional[bool] = None,
                      malformed_ignore: bool = False) -> descriptor_pb2.DescriptorProto:
        message = descriptor_pb2.DescriptorProto(name=name)
        for number, field in enumerate(fields or [], start=1):
            added = message.field.add()
            added.CopyFrom(field)
            if not added.number:
                added.number = number
        if ignore is not None:
            message.options.Extensions[entity_pb2.ignore] = ignore
        if malformed_ignore:
            message.options.MergeFromString(length_delimited(entity_pb2.ignore.number, b'no'))
        return message

    return _make_message


@pytest.fixture
def make_file() -> Callable[..., descriptor_pb2.FileDescriptorProto]:
    """Build a FileDescriptorProto from messages."""
    def _make_file(name: str, messages: Optional[List[descriptor_pb2.DescriptorProto]] = None,
                   package: str = 'events',
                   go_package: str = '') -> descriptor_pb2.FileDescriptorProto:
        fdesc = descriptor_pb2.FileDescriptorProto(name=name, package=package, syntax='proto3')
        for message in messages or []:
            fdesc.message_type.add().CopyFrom(message)
        if go_package:
            fdesc.options.go_package = go_package
        return fdesc

    return _make_file


@pytest.fixture
def user_created_file(make_file, make_message, make_field) -> descriptor_pb2.FileDescriptorProto:
    """A file with one UserCreated message identified by user_id."""
    return make_file(
        'events/user.proto',
        [make_message('UserCreated', [
            make_field('user_id', identifier=True),
            make_field('email', number=2),
        ])],
        go_package='example.com/events;events',
    )


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "generator: marks tests related to code generation"
    )
    config.addinivalue_line(
        "markers", "plugin: marks tests that exercise the protoc plugin protocol"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests that invoke protoc"
    )
