#!/usr/bin/env python3
# kate: replace-tabs on; indent-width 4;

"""
protoc-gen-entity: generate Go accessors for entity identifier fields.

Runs either as a protoc plugin:
    protoc --plugin=protoc-gen-entity --entity_out=enforce=true:gen foo.proto

or standalone, compiling the .proto files itself:
    entity-generator --enforce -D gen foo.proto
"""

import argparse
import os
import os.path
import sys
from dataclasses import dataclass, field
from tempfile import TemporaryDirectory
from typing import Any, Dict, Iterable, List, Optional

from google.protobuf import descriptor_pb2
from google.protobuf.compiler import plugin_pb2

from . import proto
from .proto._utils import invoke_protoc
from .entity_identifier import (
    Globals, debug, ConfigError, EntityGeneratorError, EnforcementPolicy,
    SchemaWalker, TypeRegistry,
)
from .entity_template import Artifact, ArtifactRenderer, PATHS_IMPORT, PATHS_MODES

# The (entity.*) extensions have to be registered before any descriptor is
# parsed, otherwise they end up as unknown fields.
entity_pb2 = proto.load_entity_pb2()

TRUE_VALUES = ('1', 't', 'T', 'TRUE', 'true', 'True')
FALSE_VALUES = ('0', 'f', 'F', 'FALSE', 'false', 'False')

# Files in a descriptor set that are never generation targets.
DEPENDENCY_PREFIXES = ('google/protobuf/',)
DEPENDENCY_FILES = ('entity.proto',)


# ---------------------------------------------------------------------------
#                         Generator configuration
# ---------------------------------------------------------------------------

def parse_parameter(parameter: str) -> Dict[str, str]:
    '''Split a protoc plugin parameter "a=1,b=2,c" into a dict.'''
    params = {}
    for item in parameter.split(','):
        item = item.strip()
        if not item:
            continue
        key, _, value = item.partition('=')
        params[key.strip()] = value.strip()
    return params


def parse_bool(params: Dict[str, str], name: str) -> bool:
    '''Boolean parameter, false when missing.'''
    if name not in params:
        return False
    value = params[name]
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ConfigError('invalid value for %s: %r (expected true or false)' % (name, value))


@dataclass
class Configuration:
    '''Settings for one generator run.'''
    policy: EnforcementPolicy = field(default_factory=EnforcementPolicy)
    paths: str = PATHS_IMPORT
    module: str = ''

    @classmethod
    def from_parameter(cls, parameter: str) -> 'Configuration':
        params = parse_parameter(parameter)
        policy = EnforcementPolicy(
            enforce=parse_bool(params, 'enforce'),
            enforce_suffix=params.get('enforce-suffix', ''),
        )
        return cls(policy, params.get('paths', PATHS_IMPORT), params.get('module', ''))

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> 'Configuration':
        policy = EnforcementPolicy(enforce=args.enforce, enforce_suffix=args.enforce_suffix)
        return cls(policy, args.paths, args.module)


# ---------------------------------------------------------------------------
#                         Processing of targets
# ---------------------------------------------------------------------------

class EntityGenerator:
    '''
    Runs detection and rendering over a set of target files.

    Artifacts are collected in `self.artifacts` as each file completes, so
    the files finished before a fatal error are still available.
    '''

    def __init__(self, config: Configuration, registry: Optional[TypeRegistry] = None):
        self.config = config
        self.walker = SchemaWalker(config.policy, entity_pb2, registry)
        self.renderer = ArtifactRenderer(config.paths, config.module)
        self.artifacts: List[Artifact] = []

    def execute(self, targets: Iterable[Any]) -> List[Artifact]:
        '''Process FileDescriptorProtos in name order, stop at the first error.'''
        for fdesc in sorted(targets, key=lambda f: f.name):
            debug("generating for target: %s" % fdesc.name)
            bindings = self.walker.scan(fdesc)
            artifact = self.renderer.render(fdesc, bindings)
            if artifact is not None:
                debug("%s: %d identifier(s) -> %s" % (fdesc.name, len(bindings), artifact.name))
                self.artifacts.append(artifact)
        return self.artifacts


def process_request(request: Any, registry: Optional[TypeRegistry] = None) -> Any:
    '''Build the CodeGeneratorResponse for a CodeGeneratorRequest.'''
    response = plugin_pb2.CodeGeneratorResponse()
    response.supported_features = plugin_pb2.CodeGeneratorResponse.FEATURE_PROTO3_OPTIONAL

    try:
        config = Configuration.from_parameter(request.parameter)
        generator = EntityGenerator(config, registry)
    except ConfigError as e:
        response.error = str(e)
        return response

    wanted = set(request.file_to_generate)
    targets = [fdesc for fdesc in request.proto_file if fdesc.name in wanted]

    try:
        generator.execute(targets)
    except EntityGeneratorError as e:
        response.error = str(e)

    for artifact in generator.artifacts:
        f = response.file.add()
        f.name = artifact.name
        f.content = artifact.content

    return response


def main_plugin():
    '''Main function when invoked as a protoc plugin.'''

    Globals.verbose = os.getenv('DEBUG', '').lower() not in ('', '0', 'false')

    data = sys.stdin.buffer.read()
    request = plugin_pb2.CodeGeneratorRequest.FromString(data)

    response = process_request(request)

    sys.stdout.buffer.write(response.SerializeToString())
    sys.stdout.buffer.flush()


# ---------------------------------------------------------------------------
#                         Command line interface
# ---------------------------------------------------------------------------

def is_dependency(fdesc: Any) -> bool:
    return fdesc.name.startswith(DEPENDENCY_PREFIXES) or fdesc.name in DEPENDENCY_FILES


def compile_protos(filenames: List[str], include_paths: List[str]) -> Any:
    '''Run protoc over .proto files and return the FileDescriptorSet.'''
    search_paths = [os.path.abspath(p) for p in include_paths]
    for filename in filenames:
        proto_dir = os.path.dirname(os.path.abspath(filename))
        if proto_dir not in search_paths:
            search_paths.append(proto_dir)

    with TemporaryDirectory(prefix='entity-') as tmpdir:
        desc_file = os.path.join(tmpdir, 'descriptor.pb')

        protoc_args = ['protoc', '--descriptor_set_out=' + desc_file]
        for path in search_paths:
            protoc_args.append('-I' + path)
        protoc_args.extend(os.path.abspath(f) for f in filenames)

        status = invoke_protoc(protoc_args)
        if status != 0:
            raise RuntimeError("protoc failed with status %d" % status)

        with open(desc_file, 'rb') as f:
            return descriptor_pb2.FileDescriptorSet.FromString(f.read())


def load_targets(filenames: List[str], include_paths: List[str]) -> List[Any]:
    '''
    Collect target FileDescriptorProtos from .proto and .pb inputs.

    .proto files are compiled without their imports, so every file in the
    resulting set is a target. For prebuilt .pb sets, the well-known types
    and entity.proto are skipped.
    '''
    targets = []

    protos = [f for f in filenames if f.endswith('.proto')]
    if protos:
        targets.extend(compile_protos(protos, include_paths).file)

    for filename in filenames:
        if filename.endswith('.proto'):
            continue
        with open(filename, 'rb') as f:
            fdescs = descriptor_pb2.FileDescriptorSet.FromString(f.read())
        targets.extend(fdesc for fdesc in fdescs.file if not is_dependency(fdesc))

    return targets


def write_artifacts(artifacts: List[Artifact], output_dir: str) -> None:
    for artifact in artifacts:
        path = os.path.join(output_dir, *artifact.name.split('/'))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w', encoding='utf-8', newline='\n') as f:
            f.write(artifact.content)
        if Globals.verbose:
            sys.stderr.write("Writing to %s\n" % path)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='entity-generator',
        description='Generate Go entity identifier accessors from .proto files'
    )
    parser.add_argument('files', nargs='+', metavar='file.proto|file.pb',
                        help='.proto files or compiled FileDescriptorSet (.pb) files')
    parser.add_argument('-I', '--include', action='append', default=[],
                        help='Include path for proto files')
    parser.add_argument('-D', '--output-dir', default='.',
                        help='Output directory for generated files (default: current directory)')
    parser.add_argument('--enforce', action='store_true',
                        help='Every message must have an (entity.identifier) field')
    parser.add_argument('--enforce-suffix', default='',
                        help='Only detect and enforce on messages ending with this suffix (implies --enforce)')
    parser.add_argument('--paths', choices=PATHS_MODES, default=PATHS_IMPORT,
                        help='Output path layout (default: %(default)s)')
    parser.add_argument('--module', default='',
                        help='Import path prefix to strip from output names')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Print diagnostic messages to stderr')
    return parser


def main_cli(argv: Optional[List[str]] = None) -> int:
    '''Main function when invoked directly from the command line.'''
    args = build_parser().parse_args(argv)
    Globals.verbose = args.verbose

    try:
        targets = load_targets(args.files, args.include)
    except (OSError, RuntimeError) as e:
        sys.stderr.write("Error loading input: %s\n" % e)
        return 1

    generator = EntityGenerator(Configuration.from_args(args))
    status = 0
    try:
        generator.execute(targets)
    except EntityGeneratorError as e:
        sys.stderr.write("%s\n" % e)
        status = 1

    write_artifacts(generator.artifacts, args.output_dir)
    return status


def main():
    # Check if we are running as a plugin under protoc
    if 'protoc-gen-' in os.path.basename(sys.argv[0]) or '--protoc-plugin' in sys.argv:
        main_plugin()
    else:
        sys.exit(main_cli())


if __name__ == '__main__':
    main()
