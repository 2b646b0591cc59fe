import argparse
from pathlib import Path

from image_installer.config import load_disk_layout, load_installer_config, load_settings
from image_installer.logging import LoggerFactory, setup_logging
from image_installer.services.installer import Installer
from image_installer.storage.command_runners import ProcessRunner
from image_installer.storage.disk_layout import DiskLayoutApplier
from image_installer.storage.exceptions import InstallerError
from image_installer.storage.mount import mount_filesystem, wait_for_device


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image-installer",
        description="Partition a disk and install the configured images onto it",
    )
    parser.add_argument("-c", "--config", help="Installer config file (image list)")
    parser.add_argument("-l", "--layout", help="Disk layout file")
    parser.add_argument(
        "-t", "--test", action="store_true", help="Test mode: do not write to the disk"
    )
    parser.add_argument(
        "-d", "--dump", action="store_true", help="Dump the disk layout and exit"
    )
    parser.add_argument(
        "-p",
        "--data-device",
        help="Wait for this device and mount it read-only on the data directory",
    )
    parser.add_argument("--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Also log captured tool output")
    parser.add_argument("--log-dir", type=Path, help="Directory for log files")
    parser.add_argument("--settings", type=Path, help="Settings file (JSON)")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    log = LoggerFactory.for_system()

    settings = load_settings(args.settings)
    runner = ProcessRunner()
    config_path = Path(args.config or settings.installer_conf)
    layout_path = Path(args.layout or settings.disk_layout_conf)

    try:
        if args.data_device and not args.dump:
            wait_for_device(args.data_device)
            mount_filesystem(
                runner,
                settings,
                args.data_device,
                settings.data_dir,
                settings.data_fstype,
                read_only=True,
            )

        layout = load_disk_layout(layout_path)
        if args.dump:
            DiskLayoutApplier(runner, settings).dump(layout)
            return 0

        entries = load_installer_config(config_path)
        if args.test:
            log.warning("Test mode: the target disk will not be modified")
        Installer(settings, layout, runner=runner, test_mode=args.test).run(entries)
    except (InstallerError, ValueError) as error:
        log.error("Installation failed: {}", error)
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
