"""
__init__.py

Initializes the meters package and maps each supported meter type to its
protocol class.
"""

from dryer_control.meters.protocols.meter_protocol import MeterProtocol
from dryer_control.meters.protocols.pzem004t_protocol import PZEM004TProtocol

__all__ = [
    'MeterProtocol',
    'PZEM004TProtocol',
]

METER_PROTOCOL_MAP = {
    'PZEM004Tv3': PZEM004TProtocol,
}


def get_protocol(meter_type: str, params: dict, logger=None) -> MeterProtocol:
    """
    Returns an instance of the protocol class for the given meter type.

    Args:
        meter_type: The meter model (e.g., "PZEM004Tv3").
        params: A dictionary of parameters from the configuration.
        logger: Optional logger passed to the protocol.

    Raises:
        ValueError: If the meter type is unsupported.
    """
    if meter_type not in METER_PROTOCOL_MAP:
        raise ValueError(f"Unsupported meter type: {meter_type}")
    return METER_PROTOCOL_MAP[meter_type](address=params.get("address", 0x01), logger=logger)
