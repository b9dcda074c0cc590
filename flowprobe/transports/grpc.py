# flowprobe/transports/grpc.py
"""
gRPC transport backed by grpcio.

Proto files are compiled at runtime with grpcio-tools into a descriptor set,
so no generated stubs are needed. Requests and responses are plain dicts
converted with ``google.protobuf.json_format``. A list payload is sent as a
client stream; server-streaming responses come back as a list.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Tuple

import grpc
from google.protobuf import descriptor_pb2, descriptor_pool, json_format, message_factory
from grpc_tools import protoc

from flowprobe.errors import TransportError
from flowprobe.transports.base import GrpcRequest, GrpcResponse, GrpcTransport

logger = logging.getLogger(__name__)


# ==================== Descriptors ====================

@lru_cache(maxsize=32)
def load_descriptor_pool(protos: Tuple[str, ...]) -> descriptor_pool.DescriptorPool:
    """Compile `protos` (and their imports) into a fresh descriptor pool."""
    if not protos:
        raise TransportError("grpc", "no proto files configured")

    paths = [Path(p).resolve() for p in protos]
    well_known = str(resources.files("grpc_tools") / "_proto")
    include_dirs = sorted({str(p.parent) for p in paths})

    with tempfile.TemporaryDirectory() as tmp:
        out = Path(tmp) / "descriptors.pb"
        args = [
            "protoc",
            f"--descriptor_set_out={out}",
            "--include_imports",
            f"-I{well_known}",
            *[f"-I{d}" for d in include_dirs],
            *[str(p) for p in paths],
        ]
        if protoc.main(args) != 0:
            raise TransportError("grpc", f"protoc could not compile {list(protos)}")
        descriptor_set = descriptor_pb2.FileDescriptorSet.FromString(out.read_bytes())

    pool = descriptor_pool.DescriptorPool()
    for file_proto in descriptor_set.file:
        pool.AddSerializedFile(file_proto.SerializeToString())
    return pool


def _metadata(values: Dict[str, Any]) -> List[Tuple[str, str]]:
    return [(str(k).lower(), str(v)) for k, v in (values or {}).items()]


def _to_dict(message) -> Dict[str, Any]:
    return json_format.MessageToDict(message, preserving_proto_field_name=True)


# ==================== Transport ====================

class GrpcioTransport(GrpcTransport):
    """Default gRPC transport. One channel per call."""

    def _channel(self, request: GrpcRequest) -> grpc.aio.Channel:
        if request.tls is None:
            return grpc.aio.insecure_channel(request.host)
        credentials = grpc.ssl_channel_credentials(
            root_certificates=request.tls.root_certs,
            private_key=request.tls.private_key,
            certificate_chain=request.tls.cert_chain,
        )
        return grpc.aio.secure_channel(request.host, credentials)

    async def call(self, request: GrpcRequest) -> GrpcResponse:
        # protoc and descriptor loading are blocking
        loop = asyncio.get_running_loop()
        pool = await loop.run_in_executor(None, load_descriptor_pool, tuple(request.protos))
        try:
            service = pool.FindServiceByName(request.service)
            method = service.FindMethodByName(request.method)
        except KeyError as e:
            raise TransportError("grpc", f"unknown method {request.service}/{request.method}") from e
        if method is None:
            raise TransportError("grpc", f"unknown method {request.service}/{request.method}")

        request_cls = message_factory.GetMessageClass(method.input_type)
        response_cls = message_factory.GetMessageClass(method.output_type)
        path = f"/{service.full_name}/{method.name}"
        payloads = request.data if isinstance(request.data, list) else [request.data or {}]
        messages = [json_format.ParseDict(p, request_cls()) for p in payloads]

        kwargs = {
            "request_serializer": request_cls.SerializeToString,
            "response_deserializer": response_cls.FromString,
        }
        timeout = request.timeout_ms / 1000 if request.timeout_ms else None
        metadata = _metadata(request.metadata)

        async with self._channel(request) as channel:
            if method.client_streaming and method.server_streaming:
                call = channel.stream_stream(path, **kwargs)(iter(messages), metadata=metadata, timeout=timeout)
            elif method.client_streaming:
                call = channel.stream_unary(path, **kwargs)(iter(messages), metadata=metadata, timeout=timeout)
            elif method.server_streaming:
                call = channel.unary_stream(path, **kwargs)(messages[0], metadata=metadata, timeout=timeout)
            else:
                call = channel.unary_unary(path, **kwargs)(messages[0], metadata=metadata, timeout=timeout)

            try:
                if method.server_streaming:
                    replies = [r async for r in call]
                    data: Any = [_to_dict(r) for r in replies]
                else:
                    replies = [await call]
                    data = _to_dict(replies[0])
            except grpc.aio.AioRpcError as e:
                logger.warning(f"gRPC {path} failed: {e.code().name} {e.details()}")
                return GrpcResponse(
                    data=None,
                    status=e.code().value[0],
                    status_text=e.details() or e.code().name,
                    size=0,
                    metadata=dict(e.trailing_metadata() or ()),
                )

            code = await call.code()
            trailing = await call.trailing_metadata()
            initial = await call.initial_metadata()

        return GrpcResponse(
            data=data,
            status=code.value[0],
            status_text=code.name,
            size=sum(r.ByteSize() for r in replies),
            metadata={**dict(initial or ()), **dict(trailing or ())},
        )
