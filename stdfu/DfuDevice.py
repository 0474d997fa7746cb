import logging
from typing import List

import usb.core
import usb.util

from stdfu import _log_root
from stdfu.Compatibility import DeviceIdentity
from stdfu.config import ST_DFU_PID, ST_DFU_VID
from stdfu.DfuErrors import TransportError
from stdfu.usb_backend import get_libusb1_backend

logger = logging.getLogger(f"{_log_root}.DfuDevice" if _log_root else "DfuDevice")


def list_dfu_devices(vid: int = ST_DFU_VID, pid: int = ST_DFU_PID) -> List[DeviceIdentity]:
    devices = usb.core.find(find_all=True, idVendor=vid, idProduct=pid, backend=get_libusb1_backend())
    return [DeviceIdentity(d.idVendor, d.idProduct, d.bcdDevice) for d in devices]


# =========================================
# STM32 bootloader in DFU mode
# =========================================
class DfuDevice:
    """
    pyusb transport for one STM32 system bootloader.

    Exposes ``ctrl_transfer`` so it can be handed straight to
    :class:`stdfu.DFUProgrammer.DFUProgrammer`, plus the device identity read
    from the device descriptor.
    """

    def __init__(self, dev, interface_index=0, alt_setting=0, desc="DFU"):
        self.dev = dev
        self.interface_index = interface_index
        self.alt_setting = alt_setting
        self.desc = desc
        self.connected = False

    @classmethod
    def find(cls, vid: int = ST_DFU_VID, pid: int = ST_DFU_PID, **kwargs) -> "DfuDevice":
        dev = usb.core.find(idVendor=vid, idProduct=pid, backend=get_libusb1_backend())
        if dev is None:
            raise TransportError(f"No DFU device found with VID:PID {vid:04X}:{pid:04X}", "find")
        return cls(dev, **kwargs)

    @property
    def identity(self) -> DeviceIdentity:
        return DeviceIdentity(
            vendor_id=self.dev.idVendor,
            product_id=self.dev.idProduct,
            bootloader_version=self.dev.bcdDevice,
        )

    def connect(self):
        try:
            self.dev.set_configuration()
            usb.util.claim_interface(self.dev, self.interface_index)
            self.dev.set_interface_altsetting(interface=self.interface_index, alternate_setting=self.alt_setting)
        except usb.core.USBError as e:
            raise TransportError(f"{self.desc}: could not claim DFU interface: {e}", "connect") from e
        self.connected = True
        logger.info(f"{self.desc}: Connected ({self.identity})")

    def disconnect(self):
        if self.connected:
            try:
                usb.util.release_interface(self.dev, self.interface_index)
            except usb.core.USBError as e:
                # expected after leave(): the bootloader has already reset
                logger.warning(f"{self.desc}: Release failed: {e}")
        usb.util.dispose_resources(self.dev)
        self.connected = False
        logger.info(f"{self.desc}: Disconnected")

    def is_connected(self) -> bool:
        if not self.dev:
            return False
        try:
            _ = self.dev.get_active_configuration()
            return True
        except (usb.core.USBError, ValueError):
            return False

    def ctrl_transfer(self, bmRequestType, bRequest, wValue=0, wIndex=0, data_or_wLength=None, timeout=None):
        return self.dev.ctrl_transfer(bmRequestType, bRequest, wValue, wIndex, data_or_wLength, timeout)

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()
        return False
