"""Command-line front end: read ELF files, write per-input packages and the bundle."""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from .archive import build_archive
from .config import PackagerConfig, load_config, parse_int
from .errors import ConfigError, IOFailure, PackagingError
from .packager import PackageInput

log = logging.getLogger(__name__)


def _int_arg(value: str) -> int:
    try:
        return parse_int(value)
    except ConfigError as e:
        raise argparse.ArgumentTypeError(e.message) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="elfpack",
        description="Convert linked ELF executables into a multi-architecture application bundle",
    )
    parser.add_argument(
        "input",
        nargs="+",
        type=Path,
        help="ELF file(s) to package, one per architecture",
    )
    parser.add_argument(
        "--output-file", "-o",
        type=Path,
        default=Path("TockApp.tab"),
        help="Output bundle (default: TockApp.tab)",
    )
    parser.add_argument(
        "--package-name", "-n",
        default=None,
        help="Package name stored in every header and used for entry names",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML file with packaging options; command-line flags override it",
    )
    parser.add_argument("--stack", dest="stack_size", type=_int_arg, default=None,
                        help="Stack size in bytes (default: 2048)")
    parser.add_argument("--app-heap", dest="app_heap_size", type=_int_arg, default=None,
                        help="Application heap size in bytes (default: 1024)")
    parser.add_argument("--kernel-heap", dest="kernel_heap_size", type=_int_arg, default=None,
                        help="Kernel heap size in bytes (default: 1024)")
    parser.add_argument("--minimum-ram", dest="minimum_ram_size", type=_int_arg, default=None,
                        help="Minimum RAM in bytes (default: derived from RAM-only sections)")
    parser.add_argument("--protected-region-size", type=_int_arg, default=None,
                        help="Size of the protected region, header included (default: header size)")
    parser.add_argument("--fixed-address", type=_int_arg, default=None,
                        help="Flash address the application is linked to run at")
    parser.add_argument("--sticky", action="store_true", default=None,
                        help="Mark the application sticky")
    parser.add_argument("--no-pow2", action="store_true",
                        help="Do not pad packages to a power-of-two slot size")
    parser.add_argument("--deterministic", action="store_true", default=None,
                        help="Produce byte-identical bundles for identical inputs")
    parser.add_argument("--metadata", action="store_true", default=None,
                        help="Add a metadata.toml entry to the bundle")
    parser.add_argument("--jobs", "-j", type=int, default=1,
                        help="Number of parallel packaging jobs")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Verbose output")
    return parser


def resolve_config(args: argparse.Namespace) -> PackagerConfig:
    """Start from the YAML file (if any) and apply command-line overrides."""
    config = load_config(args.config) if args.config else PackagerConfig()

    memory_overrides = {
        key: getattr(args, key)
        for key in (
            "stack_size",
            "app_heap_size",
            "kernel_heap_size",
            "minimum_ram_size",
            "protected_region_size",
        )
        if getattr(args, key) is not None
    }
    header_overrides = {}
    if args.sticky:
        header_overrides["sticky"] = True
    if args.no_pow2:
        header_overrides["pad_to_power_of_two"] = False

    overrides = {}
    if args.package_name is not None:
        overrides["package_name"] = args.package_name
    if args.fixed_address is not None:
        overrides["fixed_address"] = args.fixed_address
    if args.deterministic:
        overrides["deterministic"] = True
    if args.metadata:
        overrides["include_metadata"] = True

    return replace(
        config,
        memory=replace(config.memory, **memory_overrides),
        header=replace(config.header, **header_overrides),
        **overrides,
    )


def _read_inputs(paths: list[Path], output: Path, extension: str) -> list[PackageInput]:
    inputs = []
    for path in paths:
        package_path = path.with_suffix(f".{extension}")
        if package_path.resolve() == output.resolve():
            raise IOFailure(
                f"Bundle file {output} and package file {package_path} cannot be the same file",
                source=str(path),
            )
        try:
            data = path.read_bytes()
        except OSError as e:
            raise IOFailure(f"Cannot read input: {e}", source=str(path)) from e
        inputs.append(PackageInput(source=path.stem, data=data))
    return inputs


def _write(path: Path, data: bytes) -> None:
    try:
        path.write_bytes(data)
    except OSError as e:
        raise IOFailure(f"Cannot write output: {e}", source=str(path)) from e


def _write_all(outputs: list[tuple[Path, bytes]]) -> None:
    """Write every output, or remove the ones already written and re-raise."""
    written: list[Path] = []
    try:
        for path, data in outputs:
            _write(path, data)
            written.append(path)
            log.info("Wrote %s", path)
    except IOFailure:
        for path in written:
            path.unlink(missing_ok=True)
        raise


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Setup logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-5s %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        config = resolve_config(args)
        inputs = _read_inputs(args.input, args.output_file, config.extension)
        result = build_archive(inputs, config, jobs=args.jobs)

        # Nothing is written until every input has been packaged.
        outputs = [(args.output_file, result.archive)] + [
            (path.with_suffix(f".{config.extension}"), entry.package.to_bytes())
            for path, entry in zip(args.input, result.entries)
        ]
        _write_all(outputs)
    except PackagingError as e:
        log.error("%s", e)
        sys.exit(1)

    log.info("Bundle: %s (%d entries)", args.output_file, len(result.entries))


if __name__ == "__main__":
    main()
