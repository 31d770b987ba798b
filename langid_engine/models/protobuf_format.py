"""
Reader and writer for the binary model format.

The file is a single protobuf (proto2) message ``langid.LanguageIdentifier``:

    required uint32 num_feats   = 1;
    required uint32 num_langs   = 2;
    required uint32 num_states  = 3;
    repeated uint32 tk_nextmove = 4 [packed=true];
    repeated uint32 tk_output_c = 5 [packed=true];
    repeated uint32 tk_output_s = 6 [packed=true];
    repeated uint32 tk_output   = 7 [packed=true];
    repeated double nb_pc       = 8 [packed=true];
    repeated double nb_ptc      = 9 [packed=true];
    repeated string nb_classes  = 10;

The message is decoded straight from a uint8 buffer (normally a memmap of the
file). Packed doubles are returned as views into that buffer, so the large
``nb_ptc`` matrix is never copied; varint-packed tables have to be decoded
and are vectorized with numpy.
"""
from __future__ import annotations

from typing import Dict, List, Tuple

import numpy as np

from langid_engine.models.tables import ModelFormatError, ModelTables

WIRE_VARINT = 0
WIRE_FIXED64 = 1
WIRE_LENGTH = 2
WIRE_FIXED32 = 5

SCALAR_FIELDS = {1: "num_feats", 2: "num_langs", 3: "num_states"}
UINT32_FIELDS = {4: "tk_nextmove", 5: "tk_output_c", 6: "tk_output_s", 7: "tk_output"}
DOUBLE_FIELDS = {8: "nb_pc", 9: "nb_ptc"}
CLASSES_FIELD = 10

_FIELD_NUMBERS = {
    name: number
    for number, name in {**SCALAR_FIELDS, **UINT32_FIELDS, **DOUBLE_FIELDS}.items()
}
_FIELD_NUMBERS["nb_classes"] = CLASSES_FIELD

_UINT32_MAX = 0xFFFFFFFF


def _read_varint(buf: memoryview, pos: int, end: int) -> Tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= end:
            raise ModelFormatError("Truncated varint in model message.")
        byte = buf[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7
        if shift >= 64:
            raise ModelFormatError("Varint longer than 10 bytes in model message.")


def decode_packed_varints(chunk: np.ndarray) -> np.ndarray:
    """
    Decode a run of packed uint32 varints held in a uint8 array.
    """
    if chunk.size == 0:
        return np.zeros(0, dtype=np.uint32)
    ends = np.flatnonzero(chunk < 0x80)
    if ends.size == 0 or ends[-1] != chunk.size - 1:
        raise ModelFormatError("Packed varint field ends mid-value.")
    starts = np.empty_like(ends)
    starts[0] = 0
    starts[1:] = ends[:-1] + 1
    lengths = ends - starts + 1
    if int(lengths.max()) > 5:
        raise ModelFormatError("Packed uint32 field holds a value wider than 32 bits.")
    offsets = np.arange(chunk.size, dtype=np.int64) - np.repeat(starts, lengths)
    payload = (chunk & 0x7F).astype(np.uint64) << (offsets * 7).astype(np.uint64)
    values = np.add.reduceat(payload, starts)
    if int(values.max()) > _UINT32_MAX:
        raise ModelFormatError("Packed uint32 field holds a value wider than 32 bits.")
    return values.astype(np.uint32)


def _join(parts: List[np.ndarray], dtype) -> np.ndarray:
    if not parts:
        return np.zeros(0, dtype=dtype)
    if len(parts) == 1:
        return parts[0]
    return np.concatenate(parts)


def parse_model(buffer: np.ndarray) -> ModelTables:
    """
    Parse a serialized model held in a uint8 array.

    Raises :class:`ModelFormatError` on any malformed or inconsistent input.
    """
    buffer = np.asarray(buffer, dtype=np.uint8).reshape(-1)
    view = memoryview(buffer)
    end = buffer.size
    pos = 0

    scalars: Dict[str, int] = {}
    uint32_parts: Dict[str, List[np.ndarray]] = {name: [] for name in UINT32_FIELDS.values()}
    double_parts: Dict[str, List[np.ndarray]] = {name: [] for name in DOUBLE_FIELDS.values()}
    classes: List[str] = []

    while pos < end:
        key, pos = _read_varint(view, pos, end)
        number, wire = key >> 3, key & 0x7
        if number == 0:
            raise ModelFormatError("Field number 0 in model message.")

        if wire == WIRE_VARINT:
            value, pos = _read_varint(view, pos, end)
            if number in SCALAR_FIELDS:
                scalars[SCALAR_FIELDS[number]] = value
            elif number in UINT32_FIELDS:
                if value > _UINT32_MAX:
                    raise ModelFormatError(f"Field {number} value exceeds uint32.")
                uint32_parts[UINT32_FIELDS[number]].append(np.array([value], dtype=np.uint32))
        elif wire == WIRE_FIXED64:
            if pos + 8 > end:
                raise ModelFormatError("Truncated fixed64 value in model message.")
            if number in DOUBLE_FIELDS:
                double_parts[DOUBLE_FIELDS[number]].append(buffer[pos : pos + 8].view("<f8"))
            pos += 8
        elif wire == WIRE_LENGTH:
            length, pos = _read_varint(view, pos, end)
            stop = pos + length
            if stop > end:
                raise ModelFormatError(f"Field {number} runs past the end of the model.")
            if number in UINT32_FIELDS:
                uint32_parts[UINT32_FIELDS[number]].append(
                    decode_packed_varints(buffer[pos:stop])
                )
            elif number in DOUBLE_FIELDS:
                if length % 8:
                    raise ModelFormatError(
                        f"Packed double field {number} is {length} bytes long."
                    )
                double_parts[DOUBLE_FIELDS[number]].append(buffer[pos:stop].view("<f8"))
            elif number == CLASSES_FIELD:
                try:
                    classes.append(bytes(view[pos:stop]).decode("utf-8"))
                except UnicodeDecodeError as exc:
                    raise ModelFormatError("Class name is not valid UTF-8.") from exc
            pos = stop
        elif wire == WIRE_FIXED32:
            if pos + 4 > end:
                raise ModelFormatError("Truncated fixed32 value in model message.")
            pos += 4
        else:
            raise ModelFormatError(f"Unsupported wire type {wire} for field {number}.")

    missing = [name for name in SCALAR_FIELDS.values() if name not in scalars]
    if missing:
        raise ModelFormatError(f"Model message is missing required fields: {missing}.")

    return ModelTables.from_flat(
        num_feats=scalars["num_feats"],
        num_langs=scalars["num_langs"],
        num_states=scalars["num_states"],
        nextmove=_join(uint32_parts["tk_nextmove"], np.uint32),
        output_c=_join(uint32_parts["tk_output_c"], np.uint32),
        output_s=_join(uint32_parts["tk_output_s"], np.uint32),
        output=_join(uint32_parts["tk_output"], np.uint32),
        prior=_join(double_parts["nb_pc"], np.float64),
        likelihood=_join(double_parts["nb_ptc"], np.float64),
        classes=classes,
    )


def _encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        bits = value & 0x7F
        value >>= 7
        if value:
            out.append(bits | 0x80)
        else:
            out.append(bits)
            return bytes(out)


def _key(number: int, wire: int) -> bytes:
    return _encode_varint((number << 3) | wire)


def _length_delimited(number: int, payload: bytes) -> bytes:
    return _key(number, WIRE_LENGTH) + _encode_varint(len(payload)) + payload


def serialize_model(tables: ModelTables) -> bytes:
    """
    Encode tables as a packed ``langid.LanguageIdentifier`` message.
    """
    flat = tables.arrays()
    out = bytearray()
    for name in ("num_feats", "num_langs", "num_states"):
        out += _key(_FIELD_NUMBERS[name], WIRE_VARINT) + _encode_varint(int(flat[name]))
    for name in UINT32_FIELDS.values():
        values = np.asarray(flat[name]).astype(np.uint32).tolist()
        if values:
            payload = b"".join(_encode_varint(v) for v in values)
            out += _length_delimited(_FIELD_NUMBERS[name], payload)
    for name in DOUBLE_FIELDS.values():
        values = np.ascontiguousarray(flat[name], dtype="<f8")
        if values.size:
            out += _length_delimited(_FIELD_NUMBERS[name], values.tobytes())
    for name in flat["nb_classes"]:
        out += _length_delimited(CLASSES_FIELD, name.encode("utf-8"))
    return bytes(out)


__all__ = ["parse_model", "serialize_model", "decode_packed_varints"]
