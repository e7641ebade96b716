"""Serial port discovery for flashing without an explicit device path."""

import logging
from typing import Optional

# USB-serial bridges commonly found on receiver/transmitter boards
USB_SERIAL_HINTS = ("cp210", "ch340", "ch910", "ftdi", "usb-serial", "usb serial", "uart", "esp32", "stm32")


def list_serial_ports() -> list[tuple[str, str]]:
    """List available serial ports.

    Returns:
        (device, description) pairs; empty if pyserial cannot enumerate ports
    """
    try:
        import serial.tools.list_ports
    except ImportError:
        logging.warning("pyserial not installed. Cannot enumerate serial ports.")
        return []

    try:
        return [(port.device, port.description or "") for port in serial.tools.list_ports.comports()]
    except KeyboardInterrupt:
        raise
    except Exception as e:
        logging.warning(f"Port enumeration failed: {e}")
        return []


def detect_serial_port() -> Optional[str]:
    """Auto-detect the serial port of an attached device.

    Prefers ports whose description or manufacturer looks like a USB-serial
    bridge, otherwise returns the first port.

    Returns:
        Serial port name or None if not found
    """
    try:
        import serial.tools.list_ports
    except ImportError:
        logging.warning("pyserial not installed. Cannot auto-detect port.")
        return None

    try:
        ports = list(serial.tools.list_ports.comports())
    except KeyboardInterrupt:
        raise
    except Exception as e:
        logging.warning(f"Port detection failed: {e}")
        return None

    for port in ports:
        description = (port.description or "").lower()
        manufacturer = (port.manufacturer or "").lower()
        if any(hint in description or hint in manufacturer for hint in USB_SERIAL_HINTS):
            return port.device

    if ports:
        return ports[0].device
    return None
