#!/usr/bin/env python3

import argparse
import logging
import sys

import usb.core

from stdfu import __version__
from stdfu.config import POLL_INTERVAL_S, ST_DFU_PID, ST_DFU_VID
from stdfu.DfuErrors import DfuError
from stdfu.DfuFile import load_dfu_file
from stdfu.DFUProgrammer import DFUProgrammer

logger = logging.getLogger("stdfu.cli")


def _hex_int(value: str) -> int:
    return int(value, 16)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stdfu", description="Flash DfuSe files onto an STM32 DFU bootloader")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--vid", type=_hex_int, default=ST_DFU_VID, help="Bootloader USB vendor id (hex)")
    parser.add_argument("--pid", type=_hex_int, default=ST_DFU_PID, help="Bootloader USB product id (hex)")
    parser.add_argument("--poll-interval", type=float, default=POLL_INTERVAL_S, metavar="SECONDS",
                        help="Sleep between status polls (0 = busy poll)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(title="Commands", dest="command")

    info_parser = subparsers.add_parser("info", help="Validate a .dfu file and show its contents")
    info_parser.add_argument("path", help=".dfu file, or a directory to take the first .dfu file from")

    subparsers.add_parser("list", help="List connected bootloaders")
    subparsers.add_parser("erase", help="Mass erase the device flash")

    program_parser = subparsers.add_parser("program", help="Write a .dfu file and start it")
    program_parser.add_argument("path", help=".dfu file, or a directory to take the first .dfu file from")
    program_parser.add_argument("--erase", action="store_true", help="Mass erase before programming")
    return parser


def cmd_info(args) -> int:
    try:
        path, image = load_dfu_file(args.path)
    except DfuError as e:
        print(f"Error: {e}")
        return 1
    print(f"File Path: {path}")
    print(f"File Size: {image.file_size} Bytes")
    print(image.describe())
    return 0


def cmd_list(args) -> int:
    from stdfu.DfuDevice import list_dfu_devices

    try:
        devices = list_dfu_devices(args.vid, args.pid)
    except (usb.core.USBError, usb.core.NoBackendError) as e:
        print(f"Error: {e}")
        return 1
    if not devices:
        print("No device connected")
        return 1
    for device in devices:
        print(device)
    return 0


def _run_on_device(args, action) -> int:
    from stdfu.DfuDevice import DfuDevice

    try:
        device = DfuDevice.find(args.vid, args.pid)
    except (DfuError, usb.core.USBError, usb.core.NoBackendError) as e:
        print(f"Error: {e}")
        return 1

    try:
        with device:
            if not device.is_connected():
                print("No device connected")
                return 1
            programmer = DFUProgrammer(
                device,
                device=device.identity,
                interface=device.interface_index,
                poll_interval_s=args.poll_interval,
                echo_output=True,
            )
            for result in action(programmer):
                if not result.success:
                    return 1
    except DfuError as e:
        print(f"Error: {e}")
        return 1
    return 0


def cmd_erase(args) -> int:
    return _run_on_device(args, lambda p: [p.mass_erase()])


def cmd_program(args) -> int:
    def action(programmer):
        if args.erase:
            result = programmer.mass_erase()
            yield result
            if not result.success:
                return
        yield programmer.program_file(args.path)

    return _run_on_device(args, action)


COMMANDS = {
    "info": cmd_info,
    "list": cmd_list,
    "erase": cmd_erase,
    "program": cmd_program,
}


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[%(levelname)s] %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 1
    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
