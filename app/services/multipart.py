"""Multipart/related response framing for WADO-RS."""

import uuid

DICOM_MEDIA_TYPE = "application/dicom"
OCTET_STREAM_MEDIA_TYPE = "application/octet-stream"


def new_boundary() -> str:
    """Fresh random boundary token, one per response."""
    return uuid.uuid4().hex


def build_multipart_response(
    parts: list[bytes], boundary: str, content_type: str = DICOM_MEDIA_TYPE
) -> bytes:
    """
    Build multipart/related response body.

    Args:
        parts: Part payloads, in response order
        boundary: Boundary string to use
        content_type: Content-Type declared for every part

    Returns:
        Complete multipart/related message as bytes
    """
    header = (f"--{boundary}\r\n" f"Content-Type: {content_type}\r\n" f"\r\n").encode()
    body_parts = [header + data + b"\r\n" for data in parts]
    body_parts.append(f"--{boundary}--\r\n".encode())
    return b"".join(body_parts)


def multipart_content_type(boundary: str, part_type: str = DICOM_MEDIA_TYPE) -> str:
    """Content-Type header value for a multipart/related response."""
    return f'multipart/related; type="{part_type}"; boundary={boundary}'
