"""
Go source rendering for entity bindings.

ArtifactRenderer turns the bindings of one .proto file into a single
`<name>.entity.go` file. Each binding becomes one method on the message's
generated Go struct:

    func (m *UserCreated) EntityIdentifier() string {
        if m == nil {
            return ""
        }
        return m.GetUserId()
    }

Rendering only builds strings; writing them out is up to the caller.
"""

import posixpath
import re
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional

from .entity_identifier import ConfigError, EntityBinding

GENERATED_SUFFIX = '.entity.go'
ACCESSOR_NAME = 'EntityIdentifier'

PATHS_IMPORT = 'import'
PATHS_SOURCE_RELATIVE = 'source_relative'
PATHS_MODES = (PATHS_IMPORT, PATHS_SOURCE_RELATIVE)

GO_KEYWORDS = frozenset([
    'break', 'case', 'chan', 'const', 'continue', 'default', 'defer', 'else',
    'fallthrough', 'for', 'func', 'go', 'goto', 'if', 'import', 'interface',
    'map', 'package', 'range', 'return', 'select', 'struct', 'switch', 'type',
    'var',
])

# Method names protoc-gen-go reserves on message structs; a field with one
# of these Go names gets a trailing underscore.
GO_RESERVED_METHODS = frozenset([
    'Reset', 'String', 'ProtoMessage', 'Marshal', 'Unmarshal',
    'ExtensionRangeArray', 'ExtensionMap', 'Descriptor',
])


@dataclass(frozen=True)
class Artifact:
    """A generated file: path relative to the output root, and its text."""
    name: str
    content: str


# =============================================================================
# Go naming
# =============================================================================

def _is_lower(c: str) -> bool:
    return 'a' <= c <= 'z'


def _is_digit(c: str) -> bool:
    return '0' <= c <= '9'


def go_camel_case(s: str) -> str:
    """
    Convert a proto identifier to the Go name protoc-gen-go would use.

    Examples:
        >>> go_camel_case('user_id')
        'UserId'
        >>> go_camel_case('_private')
        'XPrivate'
        >>> go_camel_case('Outer.inner')
        'OuterInner'
    """
    out = []
    i = 0
    while i < len(s):
        c = s[i]
        if c == '.' and i + 1 < len(s) and _is_lower(s[i + 1]):
            pass
        elif c == '.':
            out.append('_')
        elif c == '_' and (i == 0 or s[i - 1] == '.'):
            out.append('X')
        elif c == '_' and i + 1 < len(s) and _is_lower(s[i + 1]):
            pass
        elif _is_digit(c):
            out.append(c)
        else:
            if _is_lower(c):
                c = c.upper()
            out.append(c)
            while i + 1 < len(s) and _is_lower(s[i + 1]):
                i += 1
                out.append(s[i])
        i += 1
    return ''.join(out)


def go_field_name(field: Any) -> str:
    name = go_camel_case(field.name)
    if name in GO_RESERVED_METHODS:
        name += '_'
    return name


def message_go_names(message: Any) -> set:
    """Struct field and getter names protoc-gen-go generates for `message`."""
    names = set()
    for field in message.field:
        name = go_field_name(field)
        names.add(name)
        names.add('Get' + name)
    for oneof in message.oneof_decl:
        names.add(go_camel_case(oneof.name))
    return names


def go_sanitized(s: str) -> str:
    """Make `s` usable as a Go package name."""
    s = re.sub(r'[^0-9A-Za-z_]', '_', s)
    if not re.match(r'[A-Za-z]', s) or s in GO_KEYWORDS:
        s = '_' + s
    return s


def _go_package_option(fdesc: Any) -> str:
    if not fdesc.HasField('options'):
        return ''
    return fdesc.options.go_package


def go_import_path(fdesc: Any) -> str:
    """Import path part of the go_package option, '' if there is none."""
    return _go_package_option(fdesc).split(';', 1)[0]


def go_package_name(fdesc: Any) -> str:
    """
    Go package clause for the generated file.

    Taken from go_package ("path;name" or the last path element), then the
    proto package, then the file's base name.
    """
    go_package = _go_package_option(fdesc)
    if ';' in go_package:
        name = go_package.split(';', 1)[1]
    elif go_package:
        name = go_package.rsplit('/', 1)[-1]
    elif fdesc.package:
        name = fdesc.package.replace('.', '_')
    else:
        name = posixpath.splitext(posixpath.basename(fdesc.name))[0]
    return go_sanitized(name)


# =============================================================================
# Rendering
# =============================================================================

class ArtifactRenderer:
    """
    Renders the bindings of a file into a Go source artifact.

    Attributes:
        paths: 'import' to place output under the go_package import path,
               'source_relative' to place it next to the .proto file
        module: Import path prefix stripped from output names in 'import' mode
    """

    def __init__(self, paths: str = PATHS_IMPORT, module: str = ''):
        if paths not in PATHS_MODES:
            raise ConfigError("invalid value for paths: %r" % paths)
        self.paths = paths
        self.module = module

    def output_name(self, fdesc: Any) -> str:
        """Output path for `fdesc`, e.g. 'example.com/foo/bar.entity.go'."""
        base = posixpath.splitext(posixpath.basename(fdesc.name))[0]
        import_path = go_import_path(fdesc)

        if self.paths == PATHS_SOURCE_RELATIVE or not import_path:
            directory = posixpath.dirname(fdesc.name)
        else:
            directory = import_path

        name = posixpath.join(directory, base + GENERATED_SUFFIX)

        if self.module and self.paths == PATHS_IMPORT:
            prefix = self.module.rstrip('/') + '/'
            if not name.startswith(prefix):
                raise ConfigError("%s: output name %s does not begin with module prefix %s"
                                  % (fdesc.name, name, prefix))
            name = name[len(prefix):]

        return name

    def render(self, fdesc: Any, bindings: List[EntityBinding]) -> Optional[Artifact]:
        """Return the artifact for `fdesc`, or None if it has no bindings."""
        if not bindings:
            return None
        content = ''.join(self.generate_source(fdesc, bindings))
        return Artifact(self.output_name(fdesc), content)

    def generate_source(self, fdesc: Any, bindings: List[EntityBinding]) -> Iterator[str]:
        """Generate the Go source text for `bindings`."""
        yield '// Code generated by protoc-gen-entity. DO NOT EDIT.\n'
        yield '// source: %s\n' % fdesc.name
        yield '\n'
        yield 'package %s\n' % go_package_name(fdesc)

        seen = set()
        taken = {}
        for binding in bindings:
            if binding.message_name in seen:
                accessor = ACCESSOR_NAME + go_field_name(binding.field)
            else:
                accessor = ACCESSOR_NAME
                seen.add(binding.message_name)
                taken[binding.message_name] = message_go_names(binding.message)

            # Struct fields and getters share the method namespace.
            names = taken[binding.message_name]
            while accessor in names:
                accessor += '_'
            names.add(accessor)

            yield '\n'
            for line in self._generate_accessor(binding, accessor):
                yield line

    def _generate_accessor(self, binding: EntityBinding, accessor: str) -> Iterator[str]:
        struct_name = go_camel_case(binding.message_name)
        tdesc = binding.type_descriptor

        yield '// %s returns the entity identifier held in %s.\n' % (accessor, binding.field_name)
        yield 'func (m *%s) %s() %s {\n' % (struct_name, accessor, tdesc.return_type)
        yield '\tif m == nil {\n'
        yield '\t\treturn %s\n' % tdesc.default_literal
        yield '\t}\n'
        yield '\treturn m.Get%s()\n' % go_field_name(binding.field)
        yield '}\n'
