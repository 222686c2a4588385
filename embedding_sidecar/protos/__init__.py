"""Protocol buffer definitions for the sidecar RPC surface.

The ``.proto`` file is compiled at import time with
``grpc.protos_and_services`` (backed by ``grpcio-tools``), so no generated
modules are checked in.

Exports:
- ``sidecar_pb2``: message classes (``EmbedRequest``, ``EmbedResponse``, ...)
- ``sidecar_pb2_grpc``: ``LLMServiceServicer``, ``LLMServiceStub`` and
  ``add_LLMServiceServicer_to_server``
"""

import sys
from pathlib import Path

import grpc

# Proto paths are resolved against sys.path entries; editable installs do
# not always put the directory holding the package there.
_package_root = str(Path(__file__).resolve().parent.parent.parent)
if _package_root not in sys.path:
    sys.path.append(_package_root)

sidecar_pb2, sidecar_pb2_grpc = grpc.protos_and_services("embedding_sidecar/protos/sidecar.proto")

__all__ = ["sidecar_pb2", "sidecar_pb2_grpc"]
