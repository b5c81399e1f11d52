import pytest
import langtwo.vm


def pytest_addoption(parser):
    parser.addoption(
        "--vm-debug",
        action="store_true",
        default=False,
        help="Trace every instruction the langtwo VM executes",
    )


@pytest.fixture(autouse=True)
def configure_vm_debug(request):
    """Automatically configure langtwo.vm.debug based on --vm-debug flag."""
    original_debug = langtwo.vm.debug
    langtwo.vm.debug = request.config.getoption("--vm-debug")
    yield
    langtwo.vm.debug = original_debug


@pytest.fixture(params=["vm", "llvm"])
def backend(request):
    """Runs a test once per execution engine."""
    return request.param
