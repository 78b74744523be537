import pickle
from dataclasses import replace

import pytest

from elfpack.config import MemoryRequirements, PackagerConfig
from elfpack.errors import MalformedObject, PackagingError, ProtectedRegionTooSmall
from elfpack.header import parse_header
from elfpack.packager import ArchitecturePackage, PackageInput, package_all, package_object


def test_package_layout(app_elf, config):
    package = package_object("blink", app_elf, config)
    header = package.header

    assert package.source == "blink"
    assert package.arch == "arm"
    assert header.header_size == 60
    assert header.flash_length == 96
    assert header.total_size == 512
    assert len(package.to_bytes()) == header.total_size
    assert len(package.image) == header.total_size - header.header_size

    layout = header.memory_layout
    assert layout.minimum_ram_size == 104
    assert layout.init_fn_offset == 4
    assert [(r.offset, r.size) for r in header.persistent_regions] == [(24, 64)]


def test_application_bytes(app_elf, config):
    package = package_object("blink", app_elf, config)

    assert package.application[:16] == bytes(range(16))
    assert package.application[24:88] == b"\xee" * 64
    assert package.image[package.header.flash_length:] == bytes(
        package.header.total_size - package.header.header_size - package.header.flash_length
    )


def test_package_parses_back(app_elf, config):
    package = package_object("blink", app_elf, config)
    assert parse_header(package.to_bytes()) == package.header


def test_protected_region_padding(app_elf, config):
    config = replace(config, memory=MemoryRequirements(protected_region_size=128))
    package = package_object("blink", app_elf, config)

    assert package.protected_padding == 128 - 60
    assert package.image[:68] == bytes(68)
    assert package.application[:16] == bytes(range(16))
    assert package.header.memory_layout.init_fn_offset == 4 + 68


def test_riscv_arch(riscv_elf, config):
    assert package_object("blink", riscv_elf, config).arch == "riscv32"


def test_errors_name_the_input(app_elf, config):
    with pytest.raises(MalformedObject) as exc_info:
        package_object("broken", app_elf[:40], config)
    assert exc_info.value.source == "broken"
    assert str(exc_info.value).startswith("broken: ")

    config = replace(config, memory=MemoryRequirements(protected_region_size=8))
    with pytest.raises(ProtectedRegionTooSmall) as exc_info:
        package_object("tiny", app_elf, config)
    assert exc_info.value.source == "tiny"


def test_error_survives_pickling():
    error = MalformedObject("bad section", source="app", section=".text")
    restored = pickle.loads(pickle.dumps(error))

    assert type(restored) is MalformedObject
    assert (restored.source, restored.section) == ("app", ".text")
    assert str(restored) == "app: section .text: bad section"


def test_image_length_must_match_header(app_elf, config):
    package = package_object("blink", app_elf, config)
    with pytest.raises(ValueError):
        ArchitecturePackage("blink", "arm", package.header, package.image[:-1])


@pytest.mark.parametrize("jobs", [1, 2])
def test_package_all_keeps_input_order(app_elf, riscv_elf, jobs):
    inputs = [
        PackageInput("rv", riscv_elf),
        PackageInput("arm", app_elf),
        PackageInput("rv2", riscv_elf),
    ]
    packages = package_all(inputs, PackagerConfig(), jobs=jobs)

    assert [p.source for p in packages] == ["rv", "arm", "rv2"]
    assert [p.arch for p in packages] == ["riscv32", "arm", "riscv32"]


@pytest.mark.parametrize("jobs", [1, 2])
def test_package_all_reports_failing_input(app_elf, jobs):
    inputs = [PackageInput("good", app_elf), PackageInput("bad", b"garbage")]

    with pytest.raises(PackagingError) as exc_info:
        package_all(inputs, PackagerConfig(), jobs=jobs)
    assert exc_info.value.source == "bad"
