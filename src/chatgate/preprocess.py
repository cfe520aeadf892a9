"""Content normalization: raw chat messages → provider-neutral messages.

Two phases:

1. ``resolve_attachments`` fetches every referenced image/PDF once (async,
   the only I/O here). Failures are logged and the attachment is dropped.
2. ``build_messages`` is a pure transform over the messages and the resolved
   payloads.
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
import logging
import re
from typing import TYPE_CHECKING, Literal

from chatgate.errors import AttachmentResolutionError
from chatgate.mime import sniff_mime
from chatgate.providers.models import InlineData, NormalizedMessage, TextPart

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from chatgate.blobs import BlobStore
    from chatgate.providers.models import Part
    from chatgate.request import ChatRequest, FileContent, Message

logger = logging.getLogger(__name__)

Kind = Literal["image", "pdf"]

_AMBIGUOUS_MIME = {
    "application/octet-stream",
    "binary/octet-stream",
    "application/x-www-form-urlencoded",
    "image/*",
    "image/jpg",
}

_DATA_URL_RE = re.compile(r"^data:([^;,]+)?(?:;[^,]*)?;base64,(.+)$", re.S)

FILE_PREAMBLE_HEADER = "The following files were attached. Their extracted text is included below."
FILE_BEGIN = "----- BEGIN FILE: {name} -----"
FILE_END = "----- END FILE: {name} -----"
USER_PROMPT_MARKER = "----- USER MESSAGE -----"


def detect_mime(data_b64: str, stored: str | None, kind: Kind) -> str:
    """Choose the MIME type sent upstream.

    Stored metadata is trusted when it is specific and matches *kind*;
    otherwise the payload signature decides.

    Raises:
        AttachmentResolutionError: When neither source yields a usable type.
    """
    stored = (stored or "").split(";", 1)[0].strip().lower() or None
    if stored is not None and stored not in _AMBIGUOUS_MIME:
        if kind == "pdf" and stored == "application/pdf":
            return stored
        if kind == "image" and stored.startswith("image/"):
            return stored
    sniffed = sniff_mime(data_b64)
    if sniffed is not None:
        if kind == "pdf" and sniffed == "application/pdf":
            return sniffed
        if kind == "image" and sniffed.startswith("image/"):
            return sniffed
    if kind == "pdf" and stored in (None, "application/octet-stream", "binary/octet-stream"):
        return "application/pdf"
    raise AttachmentResolutionError(
        f"Could not determine a {kind} MIME type (stored={stored!r})"
    )


def parse_data_url(value: str) -> tuple[str, str | None] | None:
    """Split a ``data:`` URL into ``(base64_payload, mime)``; None if not one."""
    match = _DATA_URL_RE.match(value)
    if match is None:
        return None
    return match.group(2).strip(), match.group(1)


@dataclass(frozen=True)
class Attachments:
    """Attachment references carried by a request."""

    image_uris: tuple[str, ...] = ()
    pdf_uris: tuple[str, ...] = ()
    file_contents: tuple[FileContent, ...] = ()

    @classmethod
    def from_request(cls, request: ChatRequest) -> Attachments:
        return cls(
            image_uris=request.image_uris,
            pdf_uris=request.pdf_uris,
            file_contents=request.file_contents,
        )


def _referenced(
    messages: Sequence[Message], attachments: Attachments
) -> list[tuple[str, Kind]]:
    refs: list[tuple[str, Kind]] = []
    for message in messages:
        if isinstance(message.content, str):
            continue
        for part in message.content:
            if part.type == "image" and part.image:
                refs.append((part.image, "image"))
            elif part.type == "pdf" and part.pdf:
                refs.append((part.pdf, "pdf"))
    refs.extend((uri, "image") for uri in attachments.image_uris)
    refs.extend((uri, "pdf") for uri in attachments.pdf_uris)
    seen: set[str] = set()
    unique: list[tuple[str, Kind]] = []
    for uri, kind in refs:
        if uri not in seen:
            seen.add(uri)
            unique.append((uri, kind))
    return unique


async def _resolve_one(uri: str, kind: Kind, blobs: BlobStore | None) -> InlineData:
    inline = parse_data_url(uri)
    if inline is not None:
        data_b64, stored = inline
    else:
        if blobs is None:
            raise AttachmentResolutionError(f"No blob store configured for {uri}")
        raw, stored = await blobs.fetch(uri)
        data_b64 = base64.b64encode(raw).decode("ascii")
    if not data_b64:
        raise AttachmentResolutionError(f"Empty attachment: {uri}")
    return InlineData(kind=kind, data=data_b64, mime_type=detect_mime(data_b64, stored, kind))


async def resolve_attachments(
    messages: Sequence[Message],
    attachments: Attachments,
    blobs: BlobStore | None,
) -> dict[str, InlineData]:
    """Resolve every referenced image/PDF concurrently; drop failures."""
    refs = _referenced(messages, attachments)
    if not refs:
        return {}
    results = await asyncio.gather(
        *(_resolve_one(uri, kind, blobs) for uri, kind in refs),
        return_exceptions=True,
    )
    resolved: dict[str, InlineData] = {}
    for (uri, _kind), result in zip(refs, results):
        if isinstance(result, AttachmentResolutionError):
            logger.warning("Skipping attachment %s: %s", _short(uri), result)
            continue
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            logger.warning(
                "Skipping attachment %s: unexpected %s: %s",
                _short(uri),
                type(result).__name__,
                result,
            )
            continue
        resolved[uri] = result
    return resolved


def file_preamble(files: Iterable[FileContent]) -> str:
    """Delimited block of extracted file texts."""
    sections = [FILE_PREAMBLE_HEADER]
    for f in files:
        sections.append(
            "\n".join(
                (FILE_BEGIN.format(name=f.name), f.content, FILE_END.format(name=f.name))
            )
        )
    return "\n\n".join(sections)


def _convert(message: Message, resolved: Mapping[str, InlineData]) -> list[Part]:
    if isinstance(message.content, str):
        return [TextPart(message.content)] if message.content else []
    parts: list[Part] = []
    for part in message.content:
        if part.type == "text":
            if part.text:
                parts.append(TextPart(part.text))
            continue
        ref = part.image if part.type == "image" else part.pdf
        if ref and ref in resolved:
            parts.append(resolved[ref])
    return parts


def build_messages(
    messages: Sequence[Message],
    attachments: Attachments,
    resolved: Mapping[str, InlineData],
) -> tuple[NormalizedMessage, ...]:
    """Pure transform from request messages to normalized messages.

    Request-level image/PDF attachments are appended to the last user
    message. Extracted file texts are prepended to that message's text,
    followed by a marker that separates them from the user's own prompt.
    """
    converted = [(m.role, _convert(m, resolved)) for m in messages]

    last_user = next(
        (i for i in range(len(converted) - 1, -1, -1) if converted[i][0] == "user"),
        None,
    )
    extra: list[Part] = [
        resolved[uri]
        for uri in dict.fromkeys((*attachments.image_uris, *attachments.pdf_uris))
        if uri in resolved
    ]
    if last_user is None and (extra or attachments.file_contents):
        converted.append(("user", []))
        last_user = len(converted) - 1

    if last_user is not None:
        role, parts = converted[last_user]
        if attachments.file_contents:
            preamble = file_preamble(attachments.file_contents)
            for i, p in enumerate(parts):
                if isinstance(p, TextPart):
                    parts[i] = TextPart(f"{preamble}\n\n{USER_PROMPT_MARKER}\n{p.text}")
                    break
            else:
                parts.insert(0, TextPart(f"{preamble}\n\n{USER_PROMPT_MARKER}\n"))
        already = {id(p) for p in parts}
        parts.extend(p for p in extra if id(p) not in already)
        converted[last_user] = (role, parts)

    return tuple(NormalizedMessage(role=role, parts=tuple(parts)) for role, parts in converted)


async def normalize(
    messages: Sequence[Message],
    attachments: Attachments,
    blobs: BlobStore | None = None,
) -> tuple[NormalizedMessage, ...]:
    """Resolve attachments and build normalized messages."""
    resolved = await resolve_attachments(messages, attachments, blobs)
    return build_messages(messages, attachments, resolved)


def _short(uri: str) -> str:
    return uri if len(uri) <= 80 else f"{uri[:77]}..."
