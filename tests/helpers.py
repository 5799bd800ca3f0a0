"""Shared test helper functions for spark_server tests."""

from __future__ import annotations

from spark_server.adapter import Peripheral
from spark_server.devices import Classification, Device


def make_hr_packet(
    bpm: int,
    *,
    is_16bit: bool = False,
    energy: int | None = None,
    rr_intervals: list[int] | None = None,
) -> bytes:
    """Build a BLE HR measurement packet.

    Args:
        bpm: Heart rate in BPM
        is_16bit: If True, use 16-bit BPM format
        energy: Energy expended in joules (trailing field, ignored by the decoder)
        rr_intervals: RR intervals in 1/1024 second units (trailing, ignored)

    Returns:
        Raw bytes for HR measurement characteristic
    """
    flags = 0b1 if is_16bit else 0
    if energy is not None:
        flags |= 0b1000
    if rr_intervals:
        flags |= 0b10000

    data = bytearray([flags])
    data.extend(bpm.to_bytes(2 if is_16bit else 1, "little"))
    if energy is not None:
        data.extend(energy.to_bytes(2, "little"))
    for rr in rr_intervals or []:
        data.extend(rr.to_bytes(2, "little"))
    return bytes(data)


def make_peripheral(
    address: str = "AA:BB:CC:DD:EE:FF",
    name: str | None = "Polar H10",
    rssi: int = -60,
    service_ids: list[str] | None = None,
    identifier: str | None = "aabbccddeeff",
) -> Peripheral:
    """Build a discovery event; advertises the HR service unless told otherwise."""
    return Peripheral(
        address=address,
        name=name,
        rssi=rssi,
        service_ids=["180d"] if service_ids is None else service_ids,
        identifier=identifier,
    )


def make_device(
    device_id: str = "AA:BB:CC:DD:EE:FF_aabbccddeeff",
    address: str = "AA:BB:CC:DD:EE:FF",
    name: str = "Polar H10",
) -> Device:
    """Build a registry record for a heart rate strap."""
    return Device(
        id=device_id,
        address=address,
        display_name=name,
        original_name=name,
        rssi=-60,
        has_heart_rate=True,
        classification=Classification.HEARTRATE,
        service_ids={"180d"},
    )
