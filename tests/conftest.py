import pytest

from builders import EM_ARM, EM_RISCV, app_sections, make_elf

from elfpack.config import PackagerConfig

APP_ENTRY = 0x80000004


@pytest.fixture
def app_elf() -> bytes:
    return make_elf(app_sections(), machine=EM_ARM, entry=APP_ENTRY)


@pytest.fixture
def riscv_elf() -> bytes:
    return make_elf(app_sections(), machine=EM_RISCV, entry=APP_ENTRY)


@pytest.fixture
def config() -> PackagerConfig:
    return PackagerConfig(deterministic=True)
