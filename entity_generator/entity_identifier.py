#!/usr/bin/env python3
# kate: replace-tabs on; indent-width 4;

"""
Entity Identifier Detection
===========================

This module decides which fields of a .proto file identify the entity a
message is about. Fields are marked with the (entity.identifier) option and
whole messages can be opted out with (entity.ignore), both defined in
proto/entity.proto.

Architecture Overview
---------------------
1. **TypeRegistry**: Maps a field's scalar kind to the Go return type and
   default literal used by the generated accessor. Only registered kinds can
   be identifiers.

2. **resolve_bool**: Reads one boolean extension from an option set and
   reports it as an OptionState (absent, false or true). Data that is present
   but not a bool is an error, never "absent".

3. **EnforcementPolicy**: The `enforce` and `enforce-suffix` settings, plus the
   two decisions that depend on them: is a message in scope, and is a message
   without an identifier fatal.

4. **SchemaWalker**: Walks the top-level messages and their fields in
   declared order and collects EntityBinding objects.

Main Flow
---------
1. Input: FileDescriptorProto with (entity.*) options set
2. Skip ignored messages and messages outside the suffix filter
3. Resolve (entity.identifier) on each field, check the type registry
4. Apply enforcement to each message that was examined
5. Output: ordered list of EntityBinding for the renderer
"""

import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from google.protobuf import descriptor_pb2
from google.protobuf import unknown_fields

# =============================================================================
# MODULE STATE
# =============================================================================

class Globals:
    '''Ugly global variables, should find a good way to pass these.'''
    verbose = False


def debug(text: str) -> None:
    """Write a diagnostic line to stderr when verbose output is enabled."""
    if Globals.verbose:
        sys.stderr.write(text + '\n')


# =============================================================================
# ERRORS
# =============================================================================

class EntityGeneratorError(Exception):
    """Base class for all fatal generator errors."""


class ConfigError(EntityGeneratorError):
    """A generator parameter could not be interpreted."""


class MalformedOptionError(EntityGeneratorError):
    """An (entity.*) option is present but does not hold a bool."""


class UnsupportedFieldTypeError(EntityGeneratorError):
    """An identifier field has a type with no TypeRegistry entry."""


class EnforcementViolationError(EntityGeneratorError):
    """A message in scope has no active identifier while enforcement is on."""


# =============================================================================
# TYPE REGISTRY
# =============================================================================

def type_name(kind: int) -> str:
    """
    Return the .proto spelling of a FieldDescriptorProto.Type value.

    Examples:
        >>> type_name(descriptor_pb2.FieldDescriptorProto.TYPE_STRING)
        'string'
    """
    try:
        name = descriptor_pb2.FieldDescriptorProto.Type.Name(kind)
    except ValueError:
        return 'unknown(%d)' % kind
    return name[len('TYPE_'):].lower()


@dataclass(frozen=True)
class TypeDescriptor:
    """
    Go rendering of an identifier field type.

    Attributes:
        return_type: Go type returned by the generated accessor (e.g. 'string').
        default_literal: Go literal returned for a nil message (e.g. '""').
    """
    return_type: str
    default_literal: str


class TypeRegistry:
    """
    Set of field kinds that may carry (entity.identifier).

    The registry is filled before a run starts and only read during it.
    """

    def __init__(self):
        self._types: Dict[int, TypeDescriptor] = {}

    def register(self, kind: int, return_type: str, default_literal: str) -> TypeDescriptor:
        """
        Add or replace the entry for a field kind.

        Args:
            kind: A FieldDescriptorProto.Type value, e.g. TYPE_STRING.
            return_type: Go type name of the accessor result.
            default_literal: Go literal returned when the message is nil.

        Returns:
            The stored TypeDescriptor.
        """
        entry = TypeDescriptor(return_type, default_literal)
        self._types[kind] = entry
        return entry

    def lookup(self, kind: int) -> TypeDescriptor:
        """Return the entry for `kind` or raise UnsupportedFieldTypeError."""
        try:
            return self._types[kind]
        except KeyError:
            raise UnsupportedFieldTypeError(
                "unable to handle identifier field type: %s" % type_name(kind)) from None

    def __contains__(self, kind: int) -> bool:
        return kind in self._types

    def __len__(self) -> int:
        return len(self._types)


def default_registry() -> TypeRegistry:
    """Registry with the kinds supported out of the box: string."""
    registry = TypeRegistry()
    registry.register(descriptor_pb2.FieldDescriptorProto.TYPE_STRING, 'string', '""')
    return registry


# =============================================================================
# OPTION RESOLUTION
# =============================================================================

class OptionState(Enum):
    """Value of a boolean option as written in the .proto file."""
    ABSENT = "absent"
    FALSE = "false"
    TRUE = "true"

    @property
    def present(self) -> bool:
        return self is not OptionState.ABSENT

    @property
    def value(self) -> bool:
        return self is OptionState.TRUE


def options_of(desc: Any) -> Optional[Any]:
    """Return the option message of a descriptor proto, or None if unset."""
    if desc is None or not desc.HasField('options'):
        return None
    return desc.options


def resolve_bool(options: Optional[Any], extension: Any, where: str = '') -> OptionState:
    """
    Resolve a boolean extension on an option set.

    When the extension's field number carries data of the wrong wire type,
    protobuf parsing keeps it as an unknown field instead of the extension.
    That case is reported as malformed rather than absent.

    Args:
        options: MessageOptions / FieldOptions message, or None
        extension: Extension FieldDescriptor, e.g. entity_pb2.identifier
        where: Location used in error messages ("file.proto:Message.field")

    Returns:
        OptionState.ABSENT, OptionState.FALSE or OptionState.TRUE

    Raises:
        MalformedOptionError: the option is present but is not a bool
    """
    if options is None:
        return OptionState.ABSENT

    prefix = '%s ' % where if where else ''

    if options.HasExtension(extension):
        value = options.Extensions[extension]
        if not isinstance(value, bool):
            raise MalformedOptionError(
                "%s`%s` invalid option type: %s" % (prefix, extension.full_name, type(value).__name__))
        return OptionState.TRUE if value else OptionState.FALSE

    for unknown in unknown_fields.UnknownFieldSet(options):
        if unknown.field_number == extension.number:
            raise MalformedOptionError(
                "%s`%s` invalid option type: wire type %d" % (prefix, extension.full_name, unknown.wire_type))

    return OptionState.ABSENT


# =============================================================================
# ENFORCEMENT POLICY
# =============================================================================

@dataclass(frozen=True)
class EnforcementPolicy:
    """
    Mandatory identifier settings for a run.

    Attributes:
        enforce: Every message in scope must have an active identifier field.
        enforce_suffix: When set, only messages whose name ends with this
                        suffix are in scope. Setting it turns `enforce` on.
    """
    enforce: bool = False
    enforce_suffix: str = ''

    def __post_init__(self):
        if self.enforce_suffix:
            object.__setattr__(self, 'enforce', True)

    def in_scope(self, message_name: str) -> bool:
        """True if the message takes part in detection and enforcement."""
        if not self.enforce_suffix:
            return True
        return message_name.endswith(self.enforce_suffix)

    def is_violation(self, has_identifier: bool) -> bool:
        return self.enforce and not has_identifier


# =============================================================================
# SCHEMA WALKER
# =============================================================================

@dataclass(frozen=True, eq=False)
class EntityBinding:
    """
    A message paired with one of its identifier fields.

    Attributes:
        message: DescriptorProto of the message
        field: FieldDescriptorProto of the identifier field
        type_descriptor: Registry entry for the field's type
    """
    message: Any
    field: Any
    type_descriptor: TypeDescriptor

    @property
    def message_name(self) -> str:
        return self.message.name

    @property
    def field_name(self) -> str:
        return self.field.name


class SchemaWalker:
    """
    Collects entity bindings from a file and applies the enforcement policy.

    Attributes:
        policy: EnforcementPolicy for the run
        registry: TypeRegistry of identifier-capable field kinds
        ignore_option: Extension descriptor of (entity.ignore)
        identifier_option: Extension descriptor of (entity.identifier)
    """

    def __init__(self, policy: EnforcementPolicy, entity_pb2: Any,
                 registry: Optional[TypeRegistry] = None):
        """
        Args:
            policy: EnforcementPolicy for the run
            entity_pb2: Module built from proto/entity.proto
            registry: TypeRegistry to use, default_registry() if None
        """
        self.policy = policy
        self.registry = registry if registry is not None else default_registry()
        self.ignore_option = entity_pb2.ignore
        self.identifier_option = entity_pb2.identifier

    def scan(self, fdesc: Any) -> List[EntityBinding]:
        """
        Return the entity bindings of one file in declaration order.

        Args:
            fdesc: FileDescriptorProto of the target file

        Raises:
            MalformedOptionError, UnsupportedFieldTypeError,
            EnforcementViolationError
        """
        if not fdesc.message_type:
            debug("zero messages, skipping: %s" % fdesc.name)
            return []

        bindings: List[EntityBinding] = []

        for message in fdesc.message_type:
            where = '%s:%s' % (fdesc.name, message.name)

            ignore = resolve_bool(options_of(message), self.ignore_option, where)
            if ignore.value:
                debug("%s ignoring entity" % where)
                continue

            if not self.policy.in_scope(message.name):
                continue

            has_identifier = self._scan_fields(fdesc, message, bindings)

            if self.policy.is_violation(has_identifier):
                raise EnforcementViolationError(
                    "%s `%s` not set" % (where, self.identifier_option.full_name))
            if not has_identifier:
                debug("%s `%s` not set" % (where, self.identifier_option.full_name))

        return bindings

    def _scan_fields(self, fdesc: Any, message: Any, bindings: List[EntityBinding]) -> bool:
        # The flag follows the last field that sets the option, so a later
        # `identifier = false` clears an earlier `true`. Bindings already
        # appended are kept.
        has_identifier = False

        for field in message.field:
            where = '%s:%s.%s' % (fdesc.name, message.name, field.name)
            state = resolve_bool(options_of(field), self.identifier_option, where)
            if not state.present:
                continue

            has_identifier = state.value
            if not has_identifier:
                continue

            if field.label == descriptor_pb2.FieldDescriptorProto.LABEL_REPEATED:
                raise UnsupportedFieldTypeError(
                    "%s unable to handle identifier field type: repeated %s" % (where, type_name(field.type)))

            if field.type not in self.registry:
                raise UnsupportedFieldTypeError(
                    "%s unable to handle identifier field type: %s" % (where, type_name(field.type)))

            bindings.append(EntityBinding(message, field, self.registry.lookup(field.type)))

        return has_identifier
