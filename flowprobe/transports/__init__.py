# flowprobe/transports/__init__.py
"""
Transport registry.

Default implementations are imported lazily so that, for example, a
workflow without gRPC steps never needs the protobuf toolchain loaded.
"""

from flowprobe.transports.base import (
    CertificateInfo,
    GrpcRequest,
    GrpcResponse,
    GrpcTransport,
    HTTPRequest,
    HTTPResponse,
    HTTPTransport,
    SSERequest,
    SSETransport,
    Transports,
)


def default_http() -> HTTPTransport:
    from flowprobe.transports.http import HttpxTransport
    return HttpxTransport()


def default_grpc() -> GrpcTransport:
    from flowprobe.transports.grpc import GrpcioTransport
    return GrpcioTransport()


def default_sse() -> SSETransport:
    from flowprobe.transports.sse import HttpxSSETransport
    return HttpxSSETransport()


__all__ = [
    "CertificateInfo",
    "GrpcRequest",
    "GrpcResponse",
    "GrpcTransport",
    "HTTPRequest",
    "HTTPResponse",
    "HTTPTransport",
    "SSERequest",
    "SSETransport",
    "Transports",
    "default_http",
    "default_grpc",
    "default_sse",
]
