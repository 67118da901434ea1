"""
Frame decoder for the Kobuki feedback stream.

Turns arbitrarily chunked bytes from the transport into typed sensor records.
Partial frames are buffered between calls, so feeding a stream one byte at a
time yields the same records as feeding it in one piece.

Resynchronization:
    - Bytes before a frame header are skipped silently (counted in stats).
    - A frame with a bad checksum is reported as one DecodeError covering the
      discarded span; scanning resumes at the next ``AA 55`` header.
    - A frame with a good checksum but malformed sub-payloads is reported as
      one DecodeError and dropped whole.
    - The checksum can only be checked once LEN + 1 bytes after the length
      byte have arrived. A corrupted length byte therefore holds back any
      valid frames behind it (up to 256 bytes) until enough further bytes
      arrive to fail the checksum; on a stalled stream they stay buffered.

Decode errors are handed to the error handler and logged; they are never
raised out of ``feed``.
"""

import logging
import struct
from typing import Callable, Dict, List, Optional

from py2kobuki.core.command_codes import (
    CHECKSUM_SIZE,
    FEEDBACK_SIZES,
    HEADER,
    HEADER_SIZE,
    LENGTH_SIZE,
    BumperMask,
    ButtonMask,
    CliffMask,
    FeedbackIds,
    WheelDropMask,
)
from py2kobuki.core.errors import DecodeError, ErrorCodes
from py2kobuki.core.protocol_encoder import checksum
from py2kobuki.models.sensors import (
    BatteryVoltage,
    Bumper,
    Buttons,
    ChargeState,
    Cliff,
    CliffADC,
    CurrentWheels,
    DockingIR,
    Gyro,
    Inertial,
    SensorRecord,
    WheelsDrop,
    WheelsEncoder,
    WheelsPWM,
)

logger = logging.getLogger(__name__)

DecodeErrorHandler = Callable[[DecodeError], None]

_HEADER_BYTE = HEADER[0]


class FrameDecoder:
    """
    Incremental decoder from raw bytes to SensorRecords.

    Not thread-safe: a decoder is fed by a single reader (the dispatch loop).
    """

    BASIC_SENSOR_STRUCT = struct.Struct('<HBBBHHbbBBBB')
    DOCKING_IR_STRUCT = struct.Struct('<BBB')
    INERTIAL_STRUCT = struct.Struct('<hhBBB')
    CLIFF_ADC_STRUCT = struct.Struct('<HHH')
    CURRENT_STRUCT = struct.Struct('<BB')
    GYRO_HEADER_STRUCT = struct.Struct('<BB')
    GYRO_SAMPLE_STRUCT = struct.Struct('<hhh')

    def __init__(self, error_handler: Optional[DecodeErrorHandler] = None):
        """
        Initialize the decoder.

        Args:
            error_handler: Called with each DecodeError (for example to post it
                to the diagnostics stream). Exceptions it raises are logged.
        """
        self._buffer = bytearray()
        self._error_handler = error_handler

        self._stats = {
            'frames_decoded': 0,
            'records_decoded': 0,
            'decode_errors': 0,
            'bytes_skipped': 0,
            'unknown_subpayloads': 0,
        }

    @property
    def buffered(self) -> int:
        """Number of bytes held waiting for the rest of a frame."""
        return len(self._buffer)

    def reset(self) -> None:
        """Drop any partially received frame."""
        if self._buffer:
            logger.debug(f"Discarding {len(self._buffer)} buffered bytes on reset")
        self._buffer.clear()

    def feed(self, data: bytes) -> List[SensorRecord]:
        """
        Consume bytes and return the records of every frame they complete.

        Args:
            data: Bytes read from the transport, any chunking

        Returns:
            Records in wire order (possibly empty)
        """
        self._buffer.extend(data)
        records: List[SensorRecord] = []
        buf = self._buffer

        while True:
            start = buf.find(HEADER)
            if start < 0:
                # Keep a trailing first header byte; its partner may be next.
                keep = 1 if buf and buf[-1] == _HEADER_BYTE else 0
                self._skip(len(buf) - keep)
                break

            if start > 0:
                self._skip(start)

            if len(buf) < HEADER_SIZE + LENGTH_SIZE:
                break

            length = buf[HEADER_SIZE]
            total = HEADER_SIZE + LENGTH_SIZE + length + CHECKSUM_SIZE
            if len(buf) < total:
                break

            body = buf[HEADER_SIZE:total - CHECKSUM_SIZE]
            expected = buf[total - 1]
            actual = checksum(body)
            if actual != expected:
                self._discard_bad_frame(expected, actual)
                continue

            frame = bytes(buf[:total])
            del buf[:total]

            try:
                frame_records = self._parse_payload(
                    frame[HEADER_SIZE + LENGTH_SIZE:-CHECKSUM_SIZE], frame
                )
            except DecodeError as e:
                self._report(e)
                continue

            self._stats['frames_decoded'] += 1
            self._stats['records_decoded'] += len(frame_records)
            records.extend(frame_records)

        return records

    def _skip(self, count: int) -> None:
        if count <= 0:
            return
        logger.debug(f"Skipping {count} bytes before frame header")
        self._stats['bytes_skipped'] += count
        del self._buffer[:count]

    def _discard_bad_frame(self, expected: int, actual: int) -> None:
        """Drop bytes up to the next header candidate after a checksum failure."""
        buf = self._buffer
        next_start = buf.find(HEADER, 1)
        if next_start < 0:
            next_start = len(buf) - 1 if buf[-1] == _HEADER_BYTE else len(buf)
            next_start = max(next_start, 1)
        span = bytes(buf[:next_start])
        del buf[:next_start]
        self._report(DecodeError(
            f"Checksum mismatch: expected 0x{expected:02X}, got 0x{actual:02X}",
            span=span,
            error_code=ErrorCodes.CHECKSUM_MISMATCH,
        ))

    def _report(self, error: DecodeError) -> None:
        self._stats['decode_errors'] += 1
        logger.warning(f"Decode error ({len(error.span)} bytes discarded): {error.message}")
        if self._error_handler is None:
            return
        try:
            self._error_handler(error)
        except Exception as e:
            logger.error(f"Decode error handler failed: {e}", exc_info=True)

    def _parse_payload(self, payload: bytes, frame_span: bytes) -> List[SensorRecord]:
        """
        Split a validated payload into sub-payloads and decode each.

        Raises:
            DecodeError: If any sub-payload is truncated or has the wrong size
        """
        records: List[SensorRecord] = []
        offset = 0

        while offset < len(payload):
            if offset + 2 > len(payload):
                raise DecodeError(
                    f"Truncated sub-payload header at offset {offset}",
                    span=frame_span,
                    error_code=ErrorCodes.MALFORMED_PAYLOAD,
                )
            sub_id = payload[offset]
            size = payload[offset + 1]
            data_start = offset + 2
            data_end = data_start + size
            if data_end > len(payload):
                raise DecodeError(
                    f"Sub-payload {sub_id} declares {size} bytes, "
                    f"only {len(payload) - data_start} available",
                    span=frame_span,
                    error_code=ErrorCodes.MALFORMED_PAYLOAD,
                )

            data = payload[data_start:data_end]
            expected_size = FEEDBACK_SIZES.get(sub_id)
            if expected_size is not None and size != expected_size:
                raise DecodeError(
                    f"Sub-payload {FeedbackIds(sub_id).name} has size {size}, "
                    f"expected {expected_size}",
                    span=frame_span,
                    error_code=ErrorCodes.MALFORMED_PAYLOAD,
                )

            records.extend(self._decode_subpayload(sub_id, data, frame_span))
            offset = data_end

        return records

    def _decode_subpayload(self, sub_id: int, data: bytes,
                           frame_span: bytes) -> List[SensorRecord]:
        if sub_id == FeedbackIds.BASIC_SENSOR_DATA:
            return self._decode_basic_sensor_data(data)
        if sub_id == FeedbackIds.DOCKING_IR:
            right, central, left = self.DOCKING_IR_STRUCT.unpack(data)
            return [DockingIR(left=left, center=central, right=right)]
        if sub_id == FeedbackIds.INERTIAL:
            angle, rate, _, _, _ = self.INERTIAL_STRUCT.unpack(data)
            return [Inertial(angle=angle, angle_rate=rate)]
        if sub_id == FeedbackIds.CLIFF_ADC:
            right, central, left = self.CLIFF_ADC_STRUCT.unpack(data)
            return [CliffADC(left=left, center=central, right=right)]
        if sub_id == FeedbackIds.CURRENT:
            left, right = self.CURRENT_STRUCT.unpack(data)
            return [CurrentWheels(left=left, right=right)]
        if sub_id == FeedbackIds.RAW_GYRO:
            return [self._decode_raw_gyro(data, frame_span)]

        self._stats['unknown_subpayloads'] += 1
        logger.debug(f"Ignoring sub-payload id={sub_id} size={len(data)}")
        return []

    def _decode_basic_sensor_data(self, data: bytes) -> List[SensorRecord]:
        (timestamp, bumper, wheel_drop, cliff, left_encoder, right_encoder,
         left_pwm, right_pwm, button, charger, battery,
         _overcurrent) = self.BASIC_SENSOR_STRUCT.unpack(data)

        return [
            WheelsEncoder(timestamp=timestamp, left=left_encoder, right=right_encoder),
            WheelsPWM(left=left_pwm, right=right_pwm),
            Bumper(
                left=bool(bumper & BumperMask.LEFT),
                center=bool(bumper & BumperMask.CENTER),
                right=bool(bumper & BumperMask.RIGHT),
            ),
            WheelsDrop(
                left=bool(wheel_drop & WheelDropMask.LEFT),
                right=bool(wheel_drop & WheelDropMask.RIGHT),
            ),
            Cliff(
                left=bool(cliff & CliffMask.LEFT),
                center=bool(cliff & CliffMask.CENTER),
                right=bool(cliff & CliffMask.RIGHT),
            ),
            Buttons(
                b0=bool(button & ButtonMask.B0),
                b1=bool(button & ButtonMask.B1),
                b2=bool(button & ButtonMask.B2),
            ),
            ChargeState(state=charger),
            BatteryVoltage(raw=battery),
        ]

    def _decode_raw_gyro(self, data: bytes, frame_span: bytes) -> Gyro:
        header_size = self.GYRO_HEADER_STRUCT.size
        if len(data) < header_size:
            raise DecodeError(
                "Raw gyro sub-payload too short",
                span=frame_span,
                error_code=ErrorCodes.MALFORMED_PAYLOAD,
            )
        frame_id, value_count = self.GYRO_HEADER_STRUCT.unpack_from(data)
        if value_count % 3 != 0 or len(data) != header_size + 2 * value_count:
            raise DecodeError(
                f"Raw gyro declares {value_count} values in {len(data)} bytes",
                span=frame_span,
                error_code=ErrorCodes.MALFORMED_PAYLOAD,
            )
        samples = tuple(
            self.GYRO_SAMPLE_STRUCT.unpack_from(data, header_size + i * self.GYRO_SAMPLE_STRUCT.size)
            for i in range(value_count // 3)
        )
        return Gyro(frame_id=frame_id, samples=samples)

    def get_stats(self) -> Dict[str, int]:
        """Get decoder statistics."""
        return self._stats.copy()
