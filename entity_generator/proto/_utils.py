import sys
import subprocess
import os.path


def has_grpcio_protoc(verbose = False):
    # type: (bool) -> bool
    """ checks if grpcio-tools protoc is installed"""

    try:
        import grpc_tools.protoc
    except ImportError as e:
        if verbose:
            sys.stderr.write("Failed to import grpc_tools: %s\n" % str(e))
        return False

    return True


def get_grpc_tools_proto_path():
    import importlib.resources as ir
    with ir.as_file(ir.files('grpc_tools') / '_proto') as path:
        return str(path)


def invoke_protoc(argv):
    # type: (list) -> int
    """
    Invoke protoc.

    This routine will use grpcio-provided protoc if it exists,
    using system-installed protoc as a fallback.

    Args:
        argv: protoc CLI invocation, first item must be 'protoc'
    """

    # Add current directory to include path if nothing else is specified
    if not [x for x in argv if x.startswith('-I')]:
        argv.append("-I.")

    # Make entity.proto importable as "entity.proto"
    entity_include = os.path.dirname(os.path.abspath(__file__))
    argv.append('-I' + entity_include)

    if has_grpcio_protoc():
        import grpc_tools.protoc as protoc
        proto_include = get_grpc_tools_proto_path()
        argv.append('-I' + proto_include)

        return protoc.main(argv)
    else:
        return subprocess.call(argv)


def print_versions():
    try:
        if has_grpcio_protoc(verbose = True):
            import grpc_tools.protoc
            sys.stderr.write("Using grpcio-tools protoc from " + grpc_tools.protoc.__file__ + "\n")
        else:
            sys.stderr.write("Using protoc from system path\n")

        invoke_protoc(['protoc', '--version'])
    except Exception as e:
        sys.stderr.write("Failed to determine protoc version: " + str(e) + "\n")

    try:
        import google.protobuf
        if hasattr(google.protobuf, '__file__'):
            sys.stderr.write("Using python-protobuf from " + google.protobuf.__file__ + "\n")
        sys.stderr.write("Python-protobuf version: " + google.protobuf.__version__ + "\n")
    except Exception as e:
        sys.stderr.write("Failed to determine python-protobuf version: " + str(e) + "\n")
