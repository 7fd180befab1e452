'''This file dynamically builds the entity option definitions for Python.'''

import os
import os.path
import sys
import traceback
from tempfile import TemporaryDirectory
from ._utils import has_grpcio_protoc, get_grpc_tools_proto_path, invoke_protoc, print_versions


def build_entity_proto(protosrc, dirname):
    '''Try to build entity.proto for python-protobuf.
    Returns True if successful.
    '''

    cmd = ["protoc", "--python_out={}".format(dirname), protosrc, "-I={}".format(dirname)]

    if has_grpcio_protoc():
        # descriptor.proto ships with grpcio-tools
        cmd.append("-I={}".format(get_grpc_tools_proto_path()))

    try:
        status = invoke_protoc(argv=cmd)
    except Exception:
        sys.stderr.write("Failed to build entity_pb2.py: " + ' '.join(cmd) + "\n")
        sys.stderr.write(traceback.format_exc() + "\n")
        return False

    if status != 0:
        sys.stderr.write("protoc exited with status %d: %s\n" % (status, ' '.join(cmd)))
        return False

    return True


def load_entity_pb2():
    # The generator needs a python-protobuf build of entity.proto so that
    # the (entity.ignore) and (entity.identifier) extensions are registered
    # before any descriptors are parsed. There are three ways to get it:
    #
    # 1) Load a previously generated entity_generator/proto/entity_pb2.py
    # 2) Use protoc to build it and store it permanently next to entity.proto
    # 3) Use protoc to build it, but store only temporarily in system-wide temp folder
    #
    # By default these are tried in numeric order.
    # If ENTITY_PB2_TEMP_DIR environment variable is defined, 2) is skipped.
    # If the value of $ENTITY_PB2_TEMP_DIR exists as a directory, it is used
    # instead of the system temp folder.

    tmpdir = os.getenv("ENTITY_PB2_TEMP_DIR")
    temporary_only = (tmpdir is not None)
    dirname = os.path.dirname(__file__)
    protosrc = os.path.join(dirname, "entity.proto")
    protodst = os.path.join(dirname, "entity_pb2.py")

    if tmpdir is not None and not os.path.isdir(tmpdir):
        tmpdir = None # Use system-wide temp dir

    no_rebuild = bool(int(os.getenv("ENTITY_PB2_NO_REBUILD", default = 0)))
    if no_rebuild:
        # External build rules should have already produced entity_pb2.py.
        from . import entity_pb2 as entity_pb2_mod
        return entity_pb2_mod

    if os.path.isfile(protosrc):
        src_date = os.path.getmtime(protosrc)
        if os.path.isfile(protodst) and os.path.getmtime(protodst) >= src_date:
            try:
                from . import entity_pb2 as entity_pb2_mod
                return entity_pb2_mod
            except Exception as e:
                sys.stderr.write("Failed to import entity_pb2.py: " + str(e) + "\n"
                                 "Will automatically attempt to rebuild this.\n"
                                 "Verify that python-protobuf and protoc versions match.\n")
                print_versions()

    # Try to rebuild into entity_generator/proto directory
    if not temporary_only:
        if build_entity_proto(protosrc, dirname):
            try:
                from . import entity_pb2 as entity_pb2_mod
                return entity_pb2_mod
            except Exception:
                sys.stderr.write("Failed to import entity_generator/proto/entity_pb2.py:\n")
                sys.stderr.write(traceback.format_exc() + "\n")

    # Try to rebuild into temporary directory
    with TemporaryDirectory(prefix = 'entity-', dir = tmpdir) as protodir:
        build_entity_proto(protosrc, protodir)

        if protodir not in sys.path:
            sys.path.insert(0, protodir)

        try:
            import entity_pb2 as entity_pb2_mod
            return entity_pb2_mod
        except Exception:
            sys.stderr.write("Failed to import %s/entity_pb2.py:\n" % protodir)
            sys.stderr.write(traceback.format_exc() + "\n")

    # If everything fails
    sys.stderr.write("\n\nGenerating entity_pb2.py failed.\n")
    sys.stderr.write("Make sure that a protoc generator is available and matches python-protobuf version.\n")
    print_versions()
    sys.exit(1)
